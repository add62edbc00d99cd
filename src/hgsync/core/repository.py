"""
The repository handle.

HgRepository binds a repository path (or, for pull sources, a remote URI) to
a progress sink, a configuration and a command runner, and exposes every
operation the engine offers. Queries and simple mutations are implemented
here; the multi-step workflows (pull, push, merge, backout, recover, clone,
verify) live in hgsync.core.sync.SyncService and are reached through the
delegating methods below.

Every hg invocation goes through execute(), which appends the ``-R <path>``
root selector, checks the cancel flag before dispatch, enforces the timeout
budget for its class of operation, and turns an unexpected non-zero exit into
CommandFailure carrying stderr and the hg version.
"""

from __future__ import annotations

import getpass
import logging
import os
import tempfile
from collections.abc import Iterable, Sequence
from pathlib import Path
from urllib.parse import urlsplit

from hgsync.core.addresses import (
    HttpRepositoryAddress,
    RepositoryAddress,
    is_local_uri,
    strip_user_account_info,
)
from hgsync.core.config import HgrcStore, HgSyncConfig, TimeoutConfig
from hgsync.core.diagnostics import gather_local_diagnostics, gather_remote_diagnostics
from hgsync.core.errors import Cancelled, CommandFailure, ConfigurationError, RepositoryNotFound, TimedOut
from hgsync.core.locks import LockManager, has_locks
from hgsync.core.network import (
    ProxyDiscovery,
    ProxyProber,
    can_reach_remote,
    discover_proxy,
    ensure_reachable,
)
from hgsync.core.process import CommandRunner, ExecutionResult, run_command
from hgsync.core.progress import NullProgress, Progress
from hgsync.core.revisions import (
    FileChange,
    IntegrityResult,
    Revision,
    RevisionNumber,
    parse_branches,
    parse_file_status,
    parse_log,
)
from hgsync.core.sync import SyncService

logger = logging.getLogger(__name__)

# Subcommands that do not operate on an existing repository
_NO_ROOT_SUBCOMMANDS = frozenset({"init", "clone", "version", "root"})

READINESS_MESSAGE = (
    "hgsync requires the Mercurial version control system. "
    "It must be installed and part of the PATH environment variable."
)


def execute_errors_ok(
    command: Sequence[str],
    working_directory: str | None,
    timeout_seconds: float | None,
    progress: Progress,
    *,
    config: HgSyncConfig,
    runner: CommandRunner = run_command,
) -> ExecutionResult:
    """
    Run hg once and return the result whatever the exit code.

    Args:
        command: hg arguments, without the executable
        working_directory: Directory to run in
        timeout_seconds: Budget, or None for no ceiling
        progress: Sink for verbose output and the cancel flag
        config: Supplies the executable and the diagnostics switch
        runner: Executes the process

    Raises:
        Cancelled: If cancellation was requested before or during the run.
        TimedOut: If hg exceeded its budget.
        CommandFailure: If the hg executable could not be started.
    """
    if progress.cancel_requested:
        raise Cancelled()

    text = " ".join(command)
    probe_locks = config.diagnostics and working_directory is not None
    if probe_locks and has_locks(working_directory):  # type: ignore[arg-type]
        progress.write_warning("Found a lock before executing: {0}.", text)

    progress.write_verbose("Executing: hg {0}", text)
    try:
        result = runner([config.hg_executable, *command], working_directory, timeout_seconds, progress)
    except FileNotFoundError as e:
        raise CommandFailure(
            f"Could not run {config.hg_executable}. {READINESS_MESSAGE}",
            command=list(command),
        ) from e

    if result.did_time_out:
        raise TimedOut(
            result.standard_error or f"hg {text} timed out",
            command=list(command),
            seconds=timeout_seconds,
        )
    if result.was_cancelled:
        raise Cancelled()

    if result.standard_error:
        progress.write_verbose("stderr: {0}", result.standard_error)
    if result.standard_output:
        progress.write_verbose("stdout: {0}", result.standard_output)

    # recover routinely leaves store/lock behind; not worth mentioning
    if probe_locks and "recover" not in command and has_locks(working_directory):  # type: ignore[arg-type]
        progress.write_warning("{0} left a lock.", text)

    return result


class HgRepository:
    """
    Handle on one Mercurial repository.

    Example:
        >>> repo = HgRepository.create_or_locate(Path("~/work/project").expanduser(), LoggingProgress())
        >>> repo.add_and_checkin_file(repo.path + "/data.txt")
        >>> repo.get_tip().summary
        'Add data.txt'
    """

    def __init__(
        self,
        path: str | Path,
        progress: Progress | None = None,
        *,
        config: HgSyncConfig | None = None,
        runner: CommandRunner = run_command,
        proxy_discovery: ProxyDiscovery = discover_proxy,
    ) -> None:
        """
        Args:
            path: Repository root, or the URI of a remote repository
            progress: Sink for messages and the cancel flag
            config: Settings (defaults are used if omitted)
            runner: Executes hg; tests pass a scripted fake
            proxy_discovery: Finds the HTTP proxy for network operations
        """
        self.path = str(path)
        self.progress = progress or NullProgress()
        self.config = config or HgSyncConfig()
        self.runner = runner

        if self.is_local and not os.path.isdir(self.path):
            os.makedirs(self.path, exist_ok=True)

        self.hgrc = HgrcStore(self.path)
        self.locks = LockManager(self.path, self.progress)
        self.proxy = ProxyProber(
            self.progress,
            probe_url=self.config.network.proxy_probe_url,
            discover=proxy_discovery,
        )
        self.sync = SyncService(self)
        self._user_name = self.get_user_id_in_use()

    def __repr__(self) -> str:
        return f"HgRepository({self.path!r})"

    @property
    def is_local(self) -> bool:
        return is_local_uri(self.path)

    @property
    def name(self) -> str:
        """Label used in status messages."""
        return self._user_name

    @property
    def timeouts(self) -> TimeoutConfig:
        return self.config.timeouts

    # Construction

    @classmethod
    def create_or_locate(
        cls,
        start: str | Path,
        progress: Progress | None = None,
        *,
        config: HgSyncConfig | None = None,
        runner: CommandRunner = run_command,
    ) -> HgRepository:
        """
        Find the repository containing a file or directory, or create one there.

        Args:
            start: A file or directory; for a file its directory is used

        Returns:
            A handle on the enclosing repository, or on a new repository
            initialised at start.

        Raises:
            RepositoryNotFound: If start does not exist.
        """
        progress = progress or NullProgress()
        config = config or HgSyncConfig()
        start_path = Path(start)
        if not start_path.exists():
            raise RepositoryNotFound(f"File or directory wasn't found: {start_path}")
        if not start_path.is_dir():
            start_path = start_path.parent

        result = execute_errors_ok(
            ["root"], str(start_path), config.timeouts.init_seconds, progress, config=config, runner=runner
        )
        root = result.standard_output.strip() if result.exit_code == 0 else ""
        if root:
            return cls(root, progress, config=config, runner=runner)

        repo = cls(start_path, progress, config=config, runner=runner)
        repo.execute(config.timeouts.init_seconds, "init", str(start_path))
        # Machine names are rarely meaningful; the account name is a better default
        repo.set_user_name(getpass.getuser())
        return repo

    @staticmethod
    def get_environment_readiness_message(
        hg_executable: str = "hg",
        runner: CommandRunner = run_command,
    ) -> str | None:
        """Return None if hg can be run, otherwise a message saying how to fix it."""
        try:
            result = runner([hg_executable, "version"], os.getcwd(), 5, NullProgress())
        except OSError:
            return READINESS_MESSAGE
        if result.exit_code != 0:
            return READINESS_MESSAGE
        return None

    # Execution

    def execute(
        self,
        timeout_seconds: float | None,
        subcommand: str,
        *args: str,
        failure_ok: bool = False,
        repository_root: str | None = None,
    ) -> ExecutionResult:
        """
        Run an hg subcommand against this repository.

        Args:
            timeout_seconds: Budget, or None for no ceiling
            subcommand: e.g. "pull"
            *args: Remaining arguments
            failure_ok: Return a non-zero result instead of raising
            repository_root: Target another repository with -R

        Raises:
            Cancelled: If cancellation was requested.
            TimedOut: If hg exceeded its budget.
            CommandFailure: If hg exited non-zero and failure_ok is False.
        """
        if self.progress.cancel_requested:
            raise Cancelled()

        command = [subcommand]
        root = repository_root if repository_root is not None else self.path
        if subcommand not in _NO_ROOT_SUBCOMMANDS and root:
            command += ["-R", root]
        command += list(args)

        result = execute_errors_ok(
            command,
            self._working_directory(),
            timeout_seconds,
            self.progress,
            config=self.config,
            runner=self.runner,
        )
        if result.exit_code != 0 and not failure_ok:
            raise CommandFailure(
                result.standard_error.strip() or f"Got return value {result.exit_code}",
                exit_code=result.exit_code,
                stderr=result.standard_error,
                stdout=result.standard_output,
                command=command,
                diagnostic_context=self._failure_details(command, timeout_seconds),
            )
        return result

    def _working_directory(self) -> str | None:
        if self.is_local and os.path.isdir(self.path):
            return self.path
        return None

    def _failure_details(self, command: list[str], timeout_seconds: float | None) -> str:
        details = "hg command was\n" + " ".join(command)
        try:
            result = execute_errors_ok(
                ["version"],
                self._working_directory(),
                timeout_seconds,
                NullProgress(),
                config=self.config,
                runner=self.runner,
            )
            version_info = result.standard_output
            # Drop the copyright boilerplate
            if "Copyright" in version_info:
                version_info = version_info[: version_info.index("Copyright")]
            details += "\nhg version is: " + version_info.strip()
        except (CommandFailure, TimedOut, Cancelled):
            details += "\nCould not get hg version"
        return details

    def query(self, subcommand: str, *args: str, timeout_seconds: float | None = None) -> str:
        """Run a read-only command, tolerating a non-zero exit, and return stdout."""
        if timeout_seconds is None:
            timeout_seconds = self.timeouts.local_seconds
        result = self.execute(timeout_seconds, subcommand, *args, failure_ok=True)
        if result.standard_output:
            self.progress.write_verbose(result.standard_output.strip())
        if result.standard_error:
            self.progress.write_verbose(result.standard_error.strip())
        if self.is_local and self.has_locks():
            self.progress.write_warning("Hg command {0} left lock", subcommand)
        return result.standard_output

    def _revisions(self, subcommand: str, *args: str) -> list[Revision]:
        return parse_log(self.query(subcommand, *args), max_lines=self.config.max_log_lines)

    # Identity

    def get_user_id_in_use(self) -> str:
        if self.is_local:
            return self.hgrc.get_user_name(getpass.getuser().replace(" ", ""))
        return strip_user_account_info(self.path)

    @property
    def user_id_in_use(self) -> str:
        return self._user_name

    def set_user_name(self, name: str) -> None:
        try:
            self.hgrc.set_user_name(name)
        except ConfigurationError as e:
            self.progress.write_error("Could not set the user name in the hgrc file: {0}", e)
            raise
        self._user_name = name

    # Queries

    def get_tip(self) -> Revision | None:
        """The tip changeset, or None if the repository has no changesets."""
        revisions = self._revisions("tip")
        if not revisions or revisions[0].number.local_number == "-1":
            return None
        return revisions[0]

    def get_heads(self) -> list[Revision]:
        self.progress.write_verbose("Getting heads of {0}", self.name)
        return self._revisions("heads")

    def get_branches(self) -> list[Revision]:
        self.progress.write_verbose("Getting branches of {0}", self.name)
        return parse_branches(self.query("branches"))

    def get_revision(self, number_or_hash: str) -> Revision | None:
        revisions = self._revisions("log", "--rev", number_or_hash)
        return revisions[0] if revisions else None

    def get_all_revisions(self) -> list[Revision]:
        return self._revisions("log")

    def get_revision_working_set_is_based_on(self) -> Revision | None:
        """If we committed now, which revision would be the parent?"""
        revisions = self._revisions("parents")
        return revisions[0] if revisions else None

    def get_parent_revision_numbers(self, local_number: str) -> list[RevisionNumber]:
        return [r.number for r in self._revisions("parents", "-r", local_number)]

    def get_parents_of_revision(self, local_number: str) -> list[str]:
        return [n.local_number or n.hash for n in self.get_parent_revision_numbers(local_number)]

    def get_common_ancestor(self, first: str, second: str) -> str | None:
        output = self.query("debugancestor", first, second).strip()
        if not output:
            return None
        return RevisionNumber.parse(output).local_number

    def get_log(self, max_changesets: int = 0) -> str:
        """Graph log text, limited to max_changesets when positive."""
        if max_changesets > 0:
            return self.query("log", "-G", "-l", str(max_changesets))
        return self.query("log", "-G")

    def get_changed_files(self) -> list[str]:
        result = self.execute(self.timeouts.local_seconds, "status")
        return [line[2:] for line in result.standard_output.splitlines() if line.strip()]

    def file_exists_in_repo(self, sub_path: str) -> bool:
        return bool(self.query("locate", sub_path).strip())

    def file_is_in_repository_from_full_path(self, full_path: str | Path) -> bool:
        """
        Raises:
            ValueError: If full_path is not under the repository root.
        """
        try:
            sub_path = Path(full_path).resolve().relative_to(Path(self.path).resolve())
        except ValueError:
            raise ValueError(
                f"file_is_in_repository_from_full_path() requires {full_path} to be under {self.path}"
            ) from None
        return self.file_exists_in_repo(str(sub_path))

    def has_missing_files_in_working_dir(self) -> bool:
        return bool(self.query("status", "-d").strip())

    def get_files_in_revision(self, revision: Revision) -> list[FileChange]:
        """
        Files touched by a revision.

        hg has no direct query for this, so the revision is diffed against
        each parent. A root revision has no parent, so its clean files are
        listed instead and reported as added.
        """
        local = revision.number.local_number or revision.number.hash
        parents = self.get_parents_of_revision(local)
        if parents:
            ranges = [["--rev", f"{parent}:{local}"] for parent in parents]
        else:
            ranges = [["--rev", f"{local}:{local}", "-A"]]

        files: dict[str, FileChange] = {}
        for args in ranges:
            changes = parse_file_status(
                self.query("status", *args),
                repository_path=self.path,
                revision_local_number=local,
                treat_clean_as_added=not parents,
            )
            for change in changes:
                files.setdefault(change.full_path, change)
        return list(files.values())

    def retrieve_historical_version_of_file(self, relative_path: str, revision: str) -> str:
        """
        Write a file as it was at a revision into a temp file.

        Returns:
            Path of the temp file; the caller deletes it.

        Raises:
            ValueError: If revision is empty.
            CommandFailure: If hg reported an error.
        """
        if not revision:
            raise ValueError(
                "The revision cannot be empty (note: the first revision has an empty string for its parent revision)"
            )
        fd, temp_path = tempfile.mkstemp(suffix=Path(relative_path).suffix)
        os.close(fd)
        result = self.execute(
            self.timeouts.local_seconds,
            "cat",
            "-o",
            temp_path,
            "-r",
            revision,
            relative_path,
            failure_ok=True,
        )
        if result.standard_error.strip():
            os.remove(temp_path)
            raise CommandFailure(
                f"Could not retrieve version {revision} of {relative_path}. "
                f"Mercurial said: {result.standard_error.strip()}",
                exit_code=result.exit_code,
                stderr=result.standard_error,
            )
        return temp_path

    # Mutations

    def add_and_checkin_file(self, file_path: str | Path) -> None:
        self._track_file(file_path)
        self.commit("Add {0}", Path(file_path).name)

    def _track_file(self, file_path: str | Path) -> None:
        self.progress.write_verbose(
            "Adding {0} to the files that are tracked for {1}", Path(file_path).name, self.name
        )
        self.execute(self.timeouts.local_seconds, "add", str(file_path))

    def add_and_checkin_files(
        self,
        include_patterns: Iterable[str],
        exclude_patterns: Iterable[str],
        message: str,
    ) -> None:
        """
        Record deletions, track files matching the patterns, and commit.

        Patterns are rooted at the repository; hg rejects -X patterns like
        ``**/cache`` when given alone with -R.
        """
        args: list[str] = []
        for pattern in include_patterns:
            args += ["-I", os.path.join(self.path, pattern)]
        for pattern in exclude_patterns:
            args += ["-X", os.path.join(self.path, pattern)]

        if self.has_missing_files_in_working_dir():
            self.progress.write_verbose(
                "At least one file was removed from the working directory. Telling hg to record the deletion."
            )
            self.execute(self.timeouts.local_seconds, "rm", "-A")

        self.progress.write_verbose("Adding files to be tracked ({0})", " ".join(args))
        self.execute(self.timeouts.local_seconds, "add", *args)

        self.progress.write_verbose('Committing "{0}"', message)
        self.commit(message)

    def commit(self, message: str, *args: object) -> None:
        if args:
            message = message.format(*args)
        self.progress.write_verbose("{0} committing with comment: {1}", self.name, message)
        result = self.execute(self.timeouts.local_seconds, "ci", "-m", message)
        if result.standard_output:
            self.progress.write_verbose(result.standard_output)

    def branch(self, branch_name: str) -> None:
        self.progress.write_verbose("{0} changing working dir to branch: {1}", self.name, branch_name)
        self.execute(self.timeouts.local_seconds, "branch", "-f", branch_name)

    def update(self, revision: str | None = None) -> None:
        """Make the working directory match a revision (the tip if None), discarding changes."""
        if revision is None:
            self.progress.write_verbose("{0} updating", self.name)
            self.execute(self.timeouts.local_seconds, "update", "-C")
        else:
            self.progress.write_verbose(
                "{0} updating (making working directory contain) revision {1}", self.name, revision
            )
            self.execute(self.timeouts.local_seconds, "update", "-r", revision, "-C")

    def rollback_working_directory_to_last_checkin(self) -> None:
        self.execute(self.timeouts.local_seconds, "update", "--clean")

    def rollback_working_directory_to_revision(self, revision: str) -> None:
        self.execute(self.timeouts.local_seconds, "update", "--clean", "--rev", revision)

    def tag_revision(self, revision: str, tag: str) -> None:
        """Tag a revision. This adds a changeset."""
        self.sync.tag(revision, tag)

    def clone_local(self, target_path: str | Path) -> None:
        self.execute(self.timeouts.local_seconds, "clone", "--uncompressed", self.path, str(target_path))

    def clone_to_remote_directory_without_checkout(self, target_path: str | Path) -> None:
        """
        Clone only the .hg directory, no working files.

        Nobody is tempted to edit files in a directory where nothing would
        ever check the changes in.
        """
        self.execute(
            self.timeouts.local_seconds, "clone", "-U", "--uncompressed", self.path, str(target_path)
        )

    # Synchronization workflows

    def pull_from(self, source: HgRepository, *, strict: bool = False) -> bool:
        return self.sync.pull_from(source, strict=strict)

    def try_to_pull(self, label: str, resolved_uri: str) -> bool:
        """Pull from a URI; True if changes were received."""
        source = HgRepository(
            resolved_uri,
            self.progress,
            config=self.config,
            runner=self.runner,
            proxy_discovery=self.proxy.discover,
        )
        logger.debug("Pulling from %s (%s)", label, resolved_uri)
        return self.sync.pull_from(source, strict=False)

    def push(self, address: RepositoryAddress, target_uri: str) -> None:
        self.sync.push(address, target_uri)

    def merge(self, revision: str) -> bool:
        return self.sync.merge(revision)

    def backout_head(self, revision: str, summary: str) -> str:
        return self.sync.backout_head(revision, summary)

    def recover_from_interrupted_transaction_if_needed(self) -> None:
        self.sync.recover()

    def check_integrity(self) -> IntegrityResult:
        return self.sync.check_integrity()

    @staticmethod
    def clone(
        source_uri: str,
        target_path: str | Path,
        progress: Progress | None = None,
        *,
        config: HgSyncConfig | None = None,
        runner: CommandRunner = run_command,
        proxy_discovery: ProxyDiscovery = discover_proxy,
    ) -> HgRepository:
        """Copy a repository to this computer. No timeout, but cancellable."""
        return SyncService.clone(
            source_uri,
            target_path,
            progress or NullProgress(),
            config=config,
            runner=runner,
            proxy_discovery=proxy_discovery,
        )

    def get_proxy_config_parameters(self, target_uri: str) -> list[str]:
        return self.proxy.proxy_parameters(target_uri)

    # Locks

    def has_locks(self) -> bool:
        return self.locks.has_locks()

    def remove_stale_locks(self, process_name: str | None = None, warn_if_found: bool = False) -> bool:
        return self.locks.remove_stale_locks(process_name or self.config.lock_process_name, warn_if_found)

    def ensure_unlocked(self) -> None:
        """Clear stale locks, raising LockHeld if one stays."""
        self.locks.ensure_unlocked(self.config.lock_process_name)

    # Network

    def can_reach_remote(self, uri: str) -> bool:
        network = self.config.network
        return can_reach_remote(
            uri,
            self.progress,
            control_host=network.control_host,
            ping_timeout_seconds=network.ping_timeout_seconds,
        )

    def ensure_reachable(self, uri: str) -> None:
        """
        Raises:
            NetworkUnavailable: If the remote looks unreachable.
        """
        network = self.config.network
        ensure_reachable(
            uri,
            self.progress,
            control_host=network.control_host,
            ping_timeout_seconds=network.ping_timeout_seconds,
        )

    # Remote addresses

    def get_repository_paths_in_hgrc(self) -> list[RepositoryAddress]:
        return [RepositoryAddress.create(name, uri) for name, uri in self.hgrc.get_paths()]

    def set_known_repository_addresses(self, addresses: Iterable[RepositoryAddress]) -> None:
        self.hgrc.set_paths((a.name, a.uri) for a in addresses)

    def set_the_only_address_of_this_type(self, address: RepositoryAddress) -> None:
        addresses = self.get_repository_paths_in_hgrc()
        for existing in addresses:
            if type(existing) is type(address):
                addresses.remove(existing)
                break
        addresses.append(address)
        self.set_known_repository_addresses(addresses)

    def get_default_sync_aliases(self) -> list[str]:
        return self.hgrc.get_default_sync_aliases()

    def set_default_sync_repository_aliases(self, aliases: Iterable[str]) -> None:
        self.hgrc.set_default_sync_aliases(aliases)

    def set_is_one_default_sync_address(self, address: RepositoryAddress, include: bool) -> None:
        self.hgrc.set_is_default_sync_alias(address.name, include)

    def get_default_network_address(self) -> RepositoryAddress | None:
        """The first network address marked for default sync, else the first network address."""
        network_addresses = [
            a for a in self.get_repository_paths_in_hgrc() if isinstance(a, HttpRepositoryAddress)
        ]
        if not network_addresses:
            return None
        default_aliases = self.get_default_sync_aliases()
        for address in network_addresses:
            if address.name in default_aliases:
                return address
        return network_addresses[0]

    def is_ready_for_internet_send_receive(self) -> tuple[bool, str]:
        """
        Tell whether there looks to be enough information for an internet sync.

        Returns:
            (ready, message) where message explains what is missing, or
            summarises the target when ready.
        """
        address = self.get_default_network_address()
        if address is None or not address.uri:
            return False, "The address of the server is empty."

        try:
            parts = urlsplit(address.uri)
        except ValueError:
            return False, "The address of the server has problems."
        if not parts.scheme or not parts.hostname:
            return False, "The address of the server has problems."

        project = parts.path.strip("/")
        if parts.query:
            project = f"{project}?{parts.query}"
        if not project:
            return False, f"The project name at {parts.hostname} is missing."
        if not address.user_name:
            return False, "The account name is missing."
        if not address.password:
            return False, f"The password for {parts.hostname} is missing."

        return True, (
            f"Ready to send/receive to {parts.hostname} with project '{project}' "
            f"and user '{address.user_name}'"
        )

    # Extensions and end-of-line conversion

    def ensure_extensions_enabled(self, names: Iterable[str]) -> None:
        for name in self.hgrc.ensure_extensions_enabled(names):
            self.progress.write_message("Adding extension to project configuration: {0}", name)

    def get_enabled_extensions(self) -> list[str]:
        return self.hgrc.get_enabled_extensions()

    def setup_end_of_line_conversion(self, extensions_of_text_file_types: Iterable[str]) -> None:
        self.hgrc.set_end_of_line_rules(extensions_of_text_file_types)

    # Diagnostics

    def get_diagnostic_information(self, progress: Progress | None = None) -> None:
        gather_local_diagnostics(self, progress or self.progress)

    def get_diagnostic_information_for_remote_project(self, url: str, progress: Progress | None = None) -> None:
        gather_remote_diagnostics(self, url, progress or self.progress)
