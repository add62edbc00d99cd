"""
hg-driven synchronization service.

Each method is one workflow: a fixed sequence of hg invocations on the bound
repository, with the outcome of each step deciding the next. Nothing is
shared between calls apart from the repository's memoized proxy settings.

The two network directions fail differently on purpose:

- pull failures always reach the caller, since the local repository is what
  the caller is trying to bring up to date
- push failures are logged and absorbed, since the push target is not the
  caller's source of truth
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from hgsync.core.addresses import RepositoryAddress, is_local_uri
from hgsync.core.config import HgSyncConfig, TimeoutConfig
from hgsync.core.errors import (
    AuthRejected,
    Cancelled,
    CommandFailure,
    HgError,
    InvalidOperation,
    MalformedOutput,
    is_auth_failure,
)
from hgsync.core.network import ProxyDiscovery, determine_proxy_parameters, discover_proxy
from hgsync.core.process import CommandRunner, run_command
from hgsync.core.progress import Progress
from hgsync.core.revisions import (
    IntegrityResult,
    MergeOutcome,
    RecoverOutcome,
    classify_integrity,
    classify_merge,
    classify_recover,
)

if TYPE_CHECKING:
    from hgsync.core.repository import HgRepository

logger = logging.getLogger(__name__)


class SyncService:
    """
    Runs synchronization workflows against one repository.

    Example:
        >>> sync = SyncService(repo)
        >>> changed = sync.pull_from(HgRepository("https://hg.example.org/proj"))
        >>> sync.push(RepositoryAddress.create("usb", "/media/usb/proj"), "/media/usb/proj")
    """

    def __init__(self, repository: HgRepository) -> None:
        self.repository = repository

    @property
    def progress(self) -> Progress:
        return self.repository.progress

    @property
    def timeouts(self) -> TimeoutConfig:
        return self.repository.config.timeouts

    def pull_from(self, source: HgRepository, *, strict: bool = False) -> bool:
        """
        Pull changesets from another repository.

        Args:
            source: Handle on the repository to pull from (local or remote)
            strict: Re-raise failures untouched, without reporting them

        Returns:
            True if changesets were received.

        Raises:
            AuthRejected: If the server rejected the credentials.
            CommandFailure: If the pull failed for any other reason.
            TimedOut: If the pull exceeded its budget.
        """
        repo = self.repository
        self.progress.write_status("Receiving any changes from {0}", source.name)
        self.progress.write_verbose("({0} is {1})", source.name, source.path)
        try:
            tip = repo.get_tip()
            repo.execute(
                self.timeouts.remote_seconds,
                "pull",
                "--debug",
                *repo.get_proxy_config_parameters(source.path),
                source.path,
            )
            new_tip = repo.get_tip()
        except Cancelled:
            raise
        except HgError as error:
            if strict:
                raise
            self.progress.write_warning("Could not receive from {0}", source.name)
            if is_auth_failure(_error_text(error)):
                self.progress.write_error("The server rejected the project name, user name, or password.")
                raise AuthRejected.from_failure(error) from error
            raise

        if tip is None:
            return new_tip is not None
        if new_tip is None:
            return False
        return tip.number.hash != new_tip.number.hash

    def push(self, address: RepositoryAddress, target_uri: str) -> None:
        """
        Send changesets to another repository, best-effort.

        Failures are reported as warnings and never raised. A local target
        (directory or USB key) then has its working files updated to its new
        tip, so the mirror can be browsed.
        """
        repo = self.repository
        label = address.full_name(target_uri)
        self.progress.write_status("Sending changes to {0}", label)
        self.progress.write_verbose("({0} is {1})", label, target_uri)
        try:
            repo.execute(
                self.timeouts.remote_seconds,
                "push",
                "--debug",
                *repo.get_proxy_config_parameters(target_uri),
                target_uri,
            )
        except Cancelled:
            raise
        except HgError as error:
            self.progress.write_warning("Could not send to {0}\n{1}", target_uri, error)

        if is_local_uri(target_uri):
            try:
                repo.execute(self.timeouts.local_seconds, "update", "-C", repository_root=target_uri)
            except Cancelled:
                raise
            except HgError as error:
                self.progress.write_warning(
                    "Could not update the actual files after pushing to {0}\n{1}", target_uri, error
                )

    def merge(self, revision: str) -> bool:
        """
        Merge a revision into the working directory.

        Returns:
            True if a merge was done, False if there was nothing to merge.

        Raises:
            CommandFailure: If hg failed for any other reason.
        """
        result = self.repository.execute(
            self.timeouts.merge_seconds, "merge", "-r", revision, failure_ok=True
        )
        outcome = classify_merge(result)

        if outcome is MergeOutcome.NOTHING_TO_MERGE:
            if result.standard_output:
                self.progress.write_verbose(result.standard_output)
            if result.standard_error:
                self.progress.write_verbose(result.standard_error)
            return False

        if outcome is MergeOutcome.FAILED:
            self.progress.write_error(result.standard_error)
            message = result.standard_error
            if result.standard_output:
                self.progress.write_error("Also had this in the standard output:")
                self.progress.write_error(result.standard_output)
                message = f"{message}\n{result.standard_output}"
            raise CommandFailure(
                message.strip() or f"merge exited with {result.exit_code}",
                exit_code=result.exit_code,
                stderr=result.standard_error,
                stdout=result.standard_output,
                command=["merge", "-r", revision],
            )

        return True

    def backout_head(self, revision: str, summary: str) -> str:
        """
        Add a changeset reversing a head revision.

        Only heads are accepted: backing out anything else needs a merge,
        which is not handled. The working directory is moved back to where it
        was if the backed-out revision was not its parent.

        Args:
            revision: Local number or hash of a head
            summary: Commit message of the backout changeset

        Returns:
            Local number of the backout changeset, which is the new tip.

        Raises:
            InvalidOperation: If the repository is empty, revision is not a head,
                or revision is the first changeset.
        """
        repo = self.repository
        if repo.get_tip() is None:
            raise InvalidOperation("Cannot backout the very first changeset.")
        head = next((h for h in repo.get_heads() if h.matches_local_or_hash(revision)), None)
        if head is None:
            raise InvalidOperation(
                f"backout_head() requires that revision {revision} be a head; "
                "backing out other revisions is not supported."
            )
        # hg log omits parent lines for linear history, so go by the number
        if head.number.local_number == "0":
            raise InvalidOperation("Cannot backout the very first changeset.")

        previous = repo.get_revision_working_set_is_based_on()

        # Move over to this branch, if necessary
        repo.update(revision)

        fd, message_path = tempfile.mkstemp(prefix="hgsync-backout-", suffix=".txt")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(summary)
            repo.execute(
                self.timeouts.local_seconds, "backout", "-r", revision, "--logfile", message_path
            )
        finally:
            os.remove(message_path)

        if previous is not None and not previous.matches_local_or_hash(revision):
            repo.update(previous.number.hash)

        tip = repo.get_tip()
        if tip is None or tip.number.local_number is None:
            raise MalformedOutput("hg reported no tip after the backout")
        return tip.number.local_number

    def recover(self) -> RecoverOutcome:
        """
        Roll back an interrupted transaction, if there is one.

        Returns:
            RECOVERED or NONE_NEEDED.

        Raises:
            CommandFailure: If hg recover reported an error.
        """
        repo = self.repository
        result = repo.execute(self.timeouts.local_seconds, "recover", failure_ok=True)

        if repo.has_locks():
            # recover often leaves store/lock behind
            repo.remove_stale_locks(warn_if_found=False)
            self.progress.write_verbose(
                "Recover may have left a lock, which was removed unless otherwise reported."
            )

        outcome = classify_recover(result)
        if outcome is RecoverOutcome.FAILED:
            self.progress.write_error(result.standard_error)
            raise CommandFailure(
                f"Trying to recover, got: {result.standard_error.strip()}",
                exit_code=result.exit_code,
                stderr=result.standard_error,
                stdout=result.standard_output,
                command=["recover"],
            )
        if outcome is RecoverOutcome.RECOVERED and result.standard_output:
            self.progress.write_warning("Recovered: {0}", result.standard_output)
        return outcome

    def check_integrity(self) -> IntegrityResult:
        self.progress.write_status("Validating Repository... (this can take a long time)")
        result = self.repository.execute(self.timeouts.verify_seconds, "verify", failure_ok=True)
        integrity = classify_integrity(result)
        if integrity is IntegrityResult.BAD:
            for text in (result.standard_output, result.standard_error):
                if text:
                    self.progress.write_error(text)
        else:
            self.progress.write_message(result.standard_output)
        return integrity

    def tag(self, revision: str, tag: str) -> None:
        self.repository.execute(self.timeouts.local_seconds, "tag", "-r", revision, tag)

    @staticmethod
    def clone(
        source_uri: str,
        target_path: str | Path,
        progress: Progress,
        *,
        config: HgSyncConfig | None = None,
        runner: CommandRunner = run_command,
        proxy_discovery: ProxyDiscovery = discover_proxy,
    ) -> HgRepository:
        """
        Copy a repository to this computer.

        There is no timeout, but the cancel flag is honoured.

        Returns:
            Handle on the new repository.

        Raises:
            CommandFailure: If the clone failed. For HTTP 502 and 404 errors
                a hint naming the host or project is added.
        """
        from hgsync.core.repository import HgRepository

        config = config or HgSyncConfig()
        target = os.path.abspath(target_path)
        progress.write_status("Getting project...")

        repo = HgRepository(target, progress, config=config, runner=runner, proxy_discovery=proxy_discovery)
        proxy_parameters: list[str] = []
        if not is_local_uri(source_uri):
            proxy_parameters = determine_proxy_parameters(
                progress, probe_url=config.network.proxy_probe_url, discover=proxy_discovery
            )

        try:
            repo.execute(None, "clone", *proxy_parameters, source_uri, target)
        except CommandFailure as error:
            hint = _clone_failure_hint(source_uri, str(error))
            if hint:
                progress.write_message(hint)
                error.diagnostic_context = f"{error.diagnostic_context}\n{hint}".strip()
            raise

        progress.write_status("Finished copying to this computer at {0}", target)
        return HgRepository(target, progress, config=config, runner=runner, proxy_discovery=proxy_discovery)


def _error_text(error: BaseException) -> str:
    if isinstance(error, CommandFailure):
        return f"{error}\n{error.stderr}"
    return str(error)


def _clone_failure_hint(source_uri: str, error_text: str) -> str | None:
    try:
        parts = urlsplit(source_uri)
    except ValueError:
        return None
    if not parts.hostname:
        return None
    if "502" in error_text:
        return f"Check that the name {parts.hostname} is correct"
    if "404" in error_text:
        project = parts.path.strip("/")
        if parts.query:
            project = f"{project}?{parts.query}"
        return f"Check that {parts.hostname} really hosts a project labelled '{project}'"
    return None
