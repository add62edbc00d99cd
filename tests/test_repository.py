"""
Tests for HgRepository.

Tests cover:
- execute(): root selector, cancellation, timeouts, failures
- Revision and file queries
- Mutations (add, commit, update)
- create_or_locate and readiness
- Remote addresses and internet readiness
- Lock warnings in diagnostics mode, and lock clearing
- Diagnostic dumps
"""

from __future__ import annotations

import getpass
import os
from pathlib import Path

import pytest
from hg_output import EMPTY_TIP, ScriptedRunner, changeset, no_proxy, result

from hgsync.core.addresses import DirectoryRepositoryAddress, HttpRepositoryAddress, RepositoryAddress
from hgsync.core.config import HgSyncConfig, TimeoutConfig
from hgsync.core.errors import (
    Cancelled,
    CommandFailure,
    LockHeld,
    MalformedOutput,
    NetworkUnavailable,
    RepositoryNotFound,
    TimedOut,
)
from hgsync.core.locks import store_lock_path, working_lock_path
from hgsync.core.progress import RecordingProgress
from hgsync.core.repository import READINESS_MESSAGE, HgRepository
from hgsync.core.revisions import FileAction, Revision, RevisionNumber

HG_VERSION = (
    "Mercurial Distributed SCM (version 6.7.2)\n"
    "(see https://mercurial-scm.org for more information)\n\n"
    "Copyright (C) 2005-2024 Olivia Mackall and others\n"
)


# ==============================================================================
# execute
# ==============================================================================


class TestExecute:
    """Tests for HgRepository.execute."""

    def test_root_selector_follows_subcommand(self, repo, runner: ScriptedRunner):
        """-R goes right after the subcommand so hg's option parsing is happy."""
        repo.execute(10, "status", "-d")

        assert runner.calls == [["status", "-R", repo.path, "-d"]]
        assert runner.timeouts == [10]
        assert runner.working_directories == [repo.path]

    @pytest.mark.parametrize("subcommand", ["init", "clone", "version", "root"])
    def test_no_root_selector_for_repository_free_commands(self, repo, runner: ScriptedRunner, subcommand):
        repo.execute(10, subcommand, "x")

        assert runner.calls == [[subcommand, "x"]]

    def test_other_repository_root(self, repo, runner: ScriptedRunner):
        repo.execute(10, "update", "-C", repository_root="/media/usb/project")

        assert runner.calls == [["update", "-R", "/media/usb/project", "-C"]]

    def test_uses_configured_executable(self, repo_dir, progress):
        seen: list[list[str]] = []

        def runner(command, working_directory, timeout_seconds, progress):
            seen.append(list(command))
            return result()

        config = HgSyncConfig(hg_executable="/opt/hg/bin/hg")
        HgRepository(repo_dir, progress, config=config, runner=runner).execute(5, "status")

        assert seen[0][0] == "/opt/hg/bin/hg"

    def test_cancel_before_dispatch(self, repo, runner: ScriptedRunner, progress: RecordingProgress):
        """Once cancellation is requested no hg process is started."""
        progress.request_cancel()

        with pytest.raises(Cancelled):
            repo.execute(10, "status")

        assert runner.calls == []

    def test_cancelled_while_running(self, repo, runner: ScriptedRunner):
        runner.on("pull", result(exit_code=-1, was_cancelled=True))

        with pytest.raises(Cancelled):
            repo.execute(10, "pull", "/elsewhere")

    def test_timeout(self, repo, runner: ScriptedRunner):
        """A killed process surfaces as TimedOut with the budget attached."""
        runner.on("verify", result(stderr="Process timed out after 7s", exit_code=-1, did_time_out=True))

        with pytest.raises(TimedOut) as exc_info:
            repo.execute(7, "verify", failure_ok=True)

        assert exc_info.value.seconds == 7
        assert exc_info.value.command == ["verify", "-R", repo.path]

    def test_non_zero_exit_raises_with_context(self, repo, runner: ScriptedRunner):
        """The failure carries stderr, the command line and the hg version without the copyright."""
        runner.on("status", result(stderr="abort: no repository found\n", exit_code=255))
        runner.on("version", result(stdout=HG_VERSION))

        with pytest.raises(CommandFailure) as exc_info:
            repo.execute(10, "status")

        error = exc_info.value
        assert error.exit_code == 255
        assert error.stderr == "abort: no repository found\n"
        assert error.command == ["status", "-R", repo.path]
        assert error.diagnostic_context.startswith(f"hg command was\nstatus -R {repo.path}\n")
        assert "hg version is: Mercurial Distributed SCM (version 6.7.2)" in error.diagnostic_context
        assert "Copyright" not in error.diagnostic_context
        assert str(error).startswith("abort: no repository found")

    def test_failure_without_stderr(self, repo, runner: ScriptedRunner):
        runner.on("ci", result(exit_code=1))

        with pytest.raises(CommandFailure, match="Got return value 1"):
            repo.execute(10, "ci", "-m", "x")

    def test_failure_ok_returns_result(self, repo, runner: ScriptedRunner):
        runner.on("merge", result(stderr="abort: nothing to merge", exit_code=255))

        outcome = repo.execute(10, "merge", failure_ok=True)

        assert outcome.exit_code == 255

    def test_missing_executable(self, repo_dir, progress):
        """hg not installed is a CommandFailure that says how to fix it."""

        def runner(command, working_directory, timeout_seconds, progress):
            raise FileNotFoundError(command[0])

        repo = HgRepository(repo_dir, progress, runner=runner)

        with pytest.raises(CommandFailure, match="must be installed"):
            repo.execute(10, "status")

    def test_verbose_trace(self, repo, runner: ScriptedRunner, progress: RecordingProgress):
        runner.on("status", result(stdout="M a.txt\n"))

        repo.execute(10, "status")

        verbose = progress.messages("verbose")
        assert f"Executing: hg status -R {repo.path}" in verbose
        assert "stdout: M a.txt\n" in verbose


class TestTimeoutClasses:
    """Each class of operation gets its own budget."""

    @pytest.fixture
    def config(self) -> HgSyncConfig:
        return HgSyncConfig(
            timeouts=TimeoutConfig(
                local_seconds=11, merge_seconds=22, remote_seconds=33, verify_seconds=44, init_seconds=55
            )
        )

    def test_budgets(self, repo, runner: ScriptedRunner):
        runner.on("verify", result(stdout="checked 1 changesets"))

        repo.get_changed_files()
        repo.merge("1")
        repo.sync.push(RepositoryAddress.create("depot", "https://hg.example.org/p"), "https://hg.example.org/p")
        repo.check_integrity()

        assert runner.timeout_for("status") == 11
        assert runner.timeout_for("merge") == 22
        assert runner.timeout_for("push") == 33
        assert runner.timeout_for("verify") == 44


# ==============================================================================
# Queries
# ==============================================================================


class TestRevisionQueries:
    """Tests for revision queries."""

    def test_tip(self, repo, runner: ScriptedRunner):
        runner.on("tip", result(stdout=changeset("4", "eee", tag="tip", summary="latest")))

        tip = repo.get_tip()

        assert tip is not None
        assert tip.number.local_number == "4"
        assert tip.summary == "latest"

    def test_tip_of_empty_repository(self, repo, runner: ScriptedRunner):
        """hg reports -1 for a repository with no changesets."""
        runner.on("tip", result(stdout=EMPTY_TIP))

        assert repo.get_tip() is None

    def test_heads(self, repo, runner: ScriptedRunner):
        runner.on("heads", result(stdout=changeset("3", "ddd") + changeset("2", "ccc", branch="stable")))

        heads = repo.get_heads()

        assert [h.number.hash for h in heads] == ["ddd", "ccc"]
        assert heads[1].branch == "stable"

    def test_branches(self, repo, runner: ScriptedRunner):
        runner.on("branches", result(stdout="default     3:ddd\nstable      2:ccc (inactive)\n"))

        assert [b.branch for b in repo.get_branches()] == ["default", "stable"]

    def test_revision(self, repo, runner: ScriptedRunner):
        runner.on("log", result(stdout=changeset("2", "ccc", summary="two")), contains=["--rev", "ccc"])

        revision = repo.get_revision("ccc")

        assert revision is not None and revision.summary == "two"
        assert runner.commands("log") == [["log", "-R", repo.path, "--rev", "ccc"]]

    def test_unknown_revision(self, repo, runner: ScriptedRunner):
        runner.on("log", result(stderr="abort: unknown revision 'zzz'!", exit_code=255))

        assert repo.get_revision("zzz") is None

    def test_all_revisions(self, repo, runner: ScriptedRunner):
        runner.on("log", result(stdout="".join(changeset(str(n), f"h{n}") for n in (2, 1, 0))))

        assert [r.number.local_number for r in repo.get_all_revisions()] == ["2", "1", "0"]

    def test_working_set_parent(self, repo, runner: ScriptedRunner):
        runner.on("parents", result(stdout=changeset("1", "bbb")))

        assert repo.get_revision_working_set_is_based_on().number.hash == "bbb"

    def test_parents_of_merge(self, repo, runner: ScriptedRunner):
        runner.on("parents", result(stdout=changeset("1", "bbb") + changeset("2", "ccc")), contains=["-r", "3"])

        assert repo.get_parents_of_revision("3") == ["1", "2"]
        assert runner.commands("parents") == [["parents", "-R", repo.path, "-r", "3"]]

    def test_common_ancestor(self, repo, runner: ScriptedRunner):
        runner.on("debugancestor", result(stdout="1:bbbbbbbbbbbb\n"))

        assert repo.get_common_ancestor("2", "3") == "1"

    def test_no_common_ancestor(self, repo, runner: ScriptedRunner):
        assert repo.get_common_ancestor("2", "3") is None

    def test_log_limit(self, repo, runner: ScriptedRunner):
        repo.get_log(5)
        repo.get_log()

        assert runner.commands("log") == [
            ["log", "-R", repo.path, "-G", "-l", "5"],
            ["log", "-R", repo.path, "-G"],
        ]

    def test_log_line_bound_from_config(self, repo_dir, progress, runner: ScriptedRunner):
        repo = HgRepository(repo_dir, progress, config=HgSyncConfig(max_log_lines=3), runner=runner)
        runner.on("log", result(stdout="".join(changeset(str(n), f"h{n}") for n in range(3))))

        with pytest.raises(MalformedOutput):
            repo.get_all_revisions()


class TestFileQueries:
    """Tests for file-level queries."""

    def test_changed_files(self, repo, runner: ScriptedRunner):
        runner.on("status", result(stdout="M data.txt\n? new file.txt\n"))

        assert repo.get_changed_files() == ["data.txt", "new file.txt"]

    def test_file_exists(self, repo, runner: ScriptedRunner):
        runner.on("locate", result(stdout="data.txt\n"), contains=["data.txt"])

        assert repo.file_exists_in_repo("data.txt")
        assert not repo.file_exists_in_repo("other.txt")

    def test_file_from_full_path(self, repo, runner: ScriptedRunner, repo_dir: Path):
        runner.on("locate", result(stdout="sub/data.txt\n"))

        assert repo.file_is_in_repository_from_full_path(repo_dir / "sub" / "data.txt")
        assert runner.commands("locate")[0][-1] == os.path.join("sub", "data.txt")

    def test_file_outside_repository(self, repo, tmp_path: Path):
        with pytest.raises(ValueError):
            repo.file_is_in_repository_from_full_path(tmp_path / "elsewhere.txt")

    def test_missing_files(self, repo, runner: ScriptedRunner):
        assert not repo.has_missing_files_in_working_dir()

        runner.on("status", result(stdout="! gone.txt\n"), contains=["-d"])
        assert repo.has_missing_files_in_working_dir()

    def test_files_in_ordinary_revision(self, repo, runner: ScriptedRunner, repo_dir: Path):
        """The revision is diffed against its parent."""
        runner.on("parents", result(stdout=changeset("1", "bbb")), contains=["-r", "2"])
        runner.on("status", result(stdout="M data.txt\nA new.txt\n"), contains=["1:2"])

        changes = repo.get_files_in_revision(_revision("2:ccc"))

        assert [(Path(c.full_path).name, c.action) for c in changes] == [
            ("data.txt", FileAction.MODIFIED),
            ("new.txt", FileAction.ADDED),
        ]
        assert changes[0].full_path == str(repo_dir / "data.txt")
        assert changes[0].revision_local_number == "2"
        assert runner.commands("status") == [["status", "-R", repo.path, "--rev", "1:2"]]

    def test_files_in_merge_revision_deduplicated(self, repo, runner: ScriptedRunner):
        """A merge is diffed against both parents; a file seen twice is listed once."""
        runner.on("parents", result(stdout=changeset("1", "bbb") + changeset("2", "ccc")), contains=["-r"])
        runner.on("status", result(stdout="M shared.txt\nM left.txt\n"), contains=["1:3"])
        runner.on("status", result(stdout="M shared.txt\nA right.txt\n"), contains=["2:3"])
        merge = _revision("3:ddd")

        changes = repo.get_files_in_revision(merge)

        assert sorted(Path(c.full_path).name for c in changes) == ["left.txt", "right.txt", "shared.txt"]

    def test_files_in_root_revision(self, repo, runner: ScriptedRunner):
        """A root has nothing to diff against, so its files are listed as added."""
        runner.on("status", result(stdout="C data.txt\nC readme.txt\n"), contains=["0:0"])

        changes = repo.get_files_in_revision(_revision("0:aaa"))

        assert {c.action for c in changes} == {FileAction.ADDED}
        assert runner.commands("status") == [["status", "-R", repo.path, "--rev", "0:0", "-A"]]

    def test_historical_version(self, repo, runner: ScriptedRunner):
        def write_output(argv: list[str]) -> None:
            Path(argv[argv.index("-o") + 1]).write_text("old content")

        runner.on("cat", result(), effect=write_output)

        path = repo.retrieve_historical_version_of_file("data.txt", "1")
        try:
            assert Path(path).read_text() == "old content"
            assert path.endswith(".txt")
            cat = runner.commands("cat")[0]
            assert cat[cat.index("-r") + 1] == "1"
            assert cat[-1] == "data.txt"
        finally:
            os.remove(path)

    def test_historical_version_error_removes_temp_file(self, repo, runner: ScriptedRunner):
        paths: list[str] = []
        runner.on(
            "cat",
            result(stderr="data.txt: no such file in rev 000000000000\n", exit_code=1),
            effect=lambda argv: paths.append(argv[argv.index("-o") + 1]),
        )

        with pytest.raises(CommandFailure, match="Could not retrieve version 0 of data.txt"):
            repo.retrieve_historical_version_of_file("data.txt", "0")

        assert not Path(paths[0]).exists()

    def test_historical_version_needs_revision(self, repo):
        with pytest.raises(ValueError, match="cannot be empty"):
            repo.retrieve_historical_version_of_file("data.txt", "")


def _revision(descriptor: str) -> Revision:
    return Revision(number=RevisionNumber.parse(descriptor))


# ==============================================================================
# Mutations
# ==============================================================================


class TestMutations:
    """Tests for commit, add and update."""

    def test_add_and_checkin_file(self, repo, runner: ScriptedRunner, repo_dir: Path):
        repo.add_and_checkin_file(repo_dir / "data.txt")

        assert runner.calls == [
            ["add", "-R", repo.path, str(repo_dir / "data.txt")],
            ["ci", "-R", repo.path, "-m", "Add data.txt"],
        ]

    def test_add_and_checkin_files(self, repo, runner: ScriptedRunner, repo_dir: Path):
        """Deletions are recorded first; patterns are rooted at the repository."""
        runner.on("status", result(stdout="! gone.txt\n"), contains=["-d"])

        repo.add_and_checkin_files(["**.txt"], ["**/cache"], "Sync")

        assert runner.subcommands() == ["status", "rm", "add", "ci"]
        assert runner.commands("rm") == [["rm", "-R", repo.path, "-A"]]
        assert runner.commands("add") == [
            [
                "add",
                "-R",
                repo.path,
                "-I",
                os.path.join(str(repo_dir), "**.txt"),
                "-X",
                os.path.join(str(repo_dir), "**/cache"),
            ]
        ]
        assert runner.commands("ci") == [["ci", "-R", repo.path, "-m", "Sync"]]

    def test_no_rm_without_missing_files(self, repo, runner: ScriptedRunner):
        repo.add_and_checkin_files([], [], "Sync")

        assert "rm" not in runner.subcommands()

    def test_commit_formats_message(self, repo, runner: ScriptedRunner):
        repo.commit("Merged with {0}", "usb")

        assert runner.commands("ci") == [["ci", "-R", repo.path, "-m", "Merged with usb"]]

    def test_commit_keeps_braces_without_args(self, repo, runner: ScriptedRunner):
        repo.commit("Fix {weird} message")

        assert runner.commands("ci")[0][-1] == "Fix {weird} message"

    def test_update(self, repo, runner: ScriptedRunner):
        repo.update()
        repo.update("3")
        repo.rollback_working_directory_to_last_checkin()
        repo.rollback_working_directory_to_revision("2")

        assert runner.calls == [
            ["update", "-R", repo.path, "-C"],
            ["update", "-R", repo.path, "-r", "3", "-C"],
            ["update", "-R", repo.path, "--clean"],
            ["update", "-R", repo.path, "--clean", "--rev", "2"],
        ]

    def test_branch(self, repo, runner: ScriptedRunner):
        repo.branch("stable")

        assert runner.calls == [["branch", "-R", repo.path, "-f", "stable"]]

    def test_clone_local(self, repo, runner: ScriptedRunner, tmp_path: Path):
        repo.clone_local(tmp_path / "copy")
        repo.clone_to_remote_directory_without_checkout(tmp_path / "bare")

        assert runner.calls == [
            ["clone", "--uncompressed", repo.path, str(tmp_path / "copy")],
            ["clone", "-U", "--uncompressed", repo.path, str(tmp_path / "bare")],
        ]


# ==============================================================================
# Construction
# ==============================================================================


class TestCreateOrLocate:
    """Tests for HgRepository.create_or_locate."""

    def test_existing_repository(self, tmp_path: Path, runner: ScriptedRunner):
        root = tmp_path / "project"
        (root / ".hg").mkdir(parents=True)
        (root / "sub").mkdir()
        runner.on("root", result(stdout=f"{root}\n"))

        repo = HgRepository.create_or_locate(root / "sub", runner=runner)

        assert repo.path == str(root)
        assert runner.subcommands() == ["root"]
        assert runner.working_directories == [str(root / "sub")]

    def test_file_uses_its_directory(self, tmp_path: Path, runner: ScriptedRunner):
        (tmp_path / "data.txt").write_text("x")
        runner.on("root", result(stdout=f"{tmp_path}\n"))

        HgRepository.create_or_locate(tmp_path / "data.txt", runner=runner)

        assert runner.working_directories == [str(tmp_path)]

    def test_creates_repository(self, tmp_path: Path, runner: ScriptedRunner):
        """With no enclosing repository, one is initialised and given a user name."""
        runner.on("root", result(stderr="abort: no repository found", exit_code=255))
        runner.on("init", result(), effect=lambda argv: (tmp_path / ".hg").mkdir())

        repo = HgRepository.create_or_locate(tmp_path, runner=runner)

        assert runner.commands("init") == [["init", str(tmp_path)]]
        assert runner.timeout_for("init") == HgSyncConfig().timeouts.init_seconds
        assert repo.hgrc.get_user_name("nobody") == getpass.getuser()
        assert repo.user_id_in_use == getpass.getuser()

    def test_missing_start(self, tmp_path: Path, runner: ScriptedRunner):
        with pytest.raises(RepositoryNotFound):
            HgRepository.create_or_locate(tmp_path / "nope", runner=runner)


class TestReadiness:
    """Tests for get_environment_readiness_message."""

    def test_ready(self):
        assert HgRepository.get_environment_readiness_message(runner=ScriptedRunner()) is None

    def test_not_installed(self):
        runner = ScriptedRunner().on("version", FileNotFoundError("hg"))

        assert HgRepository.get_environment_readiness_message(runner=runner) == READINESS_MESSAGE

    def test_broken_install(self):
        runner = ScriptedRunner().on("version", result(exit_code=1))

        assert HgRepository.get_environment_readiness_message(runner=runner) == READINESS_MESSAGE


class TestIdentity:
    """Tests for the user identity."""

    def test_local_defaults_to_account(self, repo):
        assert repo.user_id_in_use == getpass.getuser().replace(" ", "")

    def test_from_hgrc(self, repo_dir, progress, runner):
        (repo_dir / ".hg" / "hgrc").write_text("[ui]\nusername = Bob <bob@example.org>\n")

        repo = HgRepository(repo_dir, progress, runner=runner)

        assert repo.user_id_in_use == "Bob <bob@example.org>"
        assert repo.name == "Bob <bob@example.org>"

    def test_remote_uses_uri_without_credentials(self, progress, runner):
        repo = HgRepository("https://bob:pw@hg.example.org/p", progress, runner=runner, proxy_discovery=no_proxy)

        assert repo.name == "https://hg.example.org/p"

    def test_set_user_name(self, repo):
        repo.set_user_name("alice")

        assert repo.user_id_in_use == "alice"
        assert repo.get_user_id_in_use() == "alice"


# ==============================================================================
# Addresses
# ==============================================================================


class TestAddresses:
    """Tests for [paths] handling and internet readiness."""

    def test_known_addresses_round_trip(self, repo):
        repo.set_known_repository_addresses(
            [
                RepositoryAddress.create("usb", "/media/usb/project"),
                RepositoryAddress.create("depot", "https://bob:pw@hg.example.org/project"),
            ]
        )

        addresses = repo.get_repository_paths_in_hgrc()

        assert [type(a) for a in addresses] == [DirectoryRepositoryAddress, HttpRepositoryAddress]
        assert addresses[1].user_name == "bob"

    def test_only_address_of_this_type(self, repo):
        """A new network address replaces the old one but keeps directories."""
        repo.set_known_repository_addresses(
            [
                RepositoryAddress.create("depot", "https://hg.example.org/old"),
                RepositoryAddress.create("usb", "/media/usb/project"),
            ]
        )

        repo.set_the_only_address_of_this_type(RepositoryAddress.create("server", "https://hg.example.org/new"))

        assert [(a.name, a.uri) for a in repo.get_repository_paths_in_hgrc()] == [
            ("usb", "/media/usb/project"),
            ("server", "https://hg.example.org/new"),
        ]

    def test_default_sync_aliases(self, repo):
        usb = RepositoryAddress.create("usb", "/media/usb")
        repo.set_default_sync_repository_aliases(["depot"])

        repo.set_is_one_default_sync_address(usb, True)

        assert repo.get_default_sync_aliases() == ["depot", "usb"]

    def test_default_network_address_prefers_default_alias(self, repo):
        repo.set_known_repository_addresses(
            [
                RepositoryAddress.create("first", "https://a.example.org/p"),
                RepositoryAddress.create("chosen", "https://b.example.org/p"),
            ]
        )
        assert repo.get_default_network_address().name == "first"

        repo.set_default_sync_repository_aliases(["chosen"])
        assert repo.get_default_network_address().name == "chosen"

    def test_no_network_address(self, repo):
        repo.set_known_repository_addresses([RepositoryAddress.create("usb", "/media/usb")])

        assert repo.get_default_network_address() is None

    @pytest.mark.parametrize(
        "uri,expected",
        [
            (None, "The address of the server is empty."),
            ("https://bob:pw@hg.example.org/", "The project name at hg.example.org is missing."),
            ("https://hg.example.org/project", "The account name is missing."),
            ("https://bob@hg.example.org/project", "The password for hg.example.org is missing."),
        ],
    )
    def test_not_ready_for_internet(self, repo, uri, expected):
        if uri:
            repo.set_known_repository_addresses([RepositoryAddress.create("depot", uri)])

        assert repo.is_ready_for_internet_send_receive() == (False, expected)

    def test_ready_for_internet(self, repo):
        repo.set_known_repository_addresses(
            [RepositoryAddress.create("depot", "https://bob:pw@hg.example.org/project")]
        )

        ready, message = repo.is_ready_for_internet_send_receive()

        assert ready
        assert message == "Ready to send/receive to hg.example.org with project 'project' and user 'bob'"


class TestExtensions:
    """Tests for extension and end-of-line settings."""

    def test_ensure_extensions_reports_additions(self, repo, progress: RecordingProgress):
        repo.ensure_extensions_enabled(["hgext.graphlog"])
        repo.ensure_extensions_enabled(["hgext.graphlog"])

        assert repo.get_enabled_extensions() == ["hgext.graphlog"]
        assert progress.messages("message") == ["Adding extension to project configuration: hgext.graphlog"]

    def test_end_of_line_conversion(self, repo):
        repo.setup_end_of_line_conversion(["txt"])

        assert "**.txt = dumbencode:" in repo.hgrc.read_text()


# ==============================================================================
# Locks
# ==============================================================================


class TestLockHandling:
    """Tests for lock warnings and clearing around hg invocations."""

    def test_query_warns_about_leftover_lock(self, repo, runner: ScriptedRunner, repo_dir: Path, progress):
        runner.on("heads", result(), effect=lambda argv: working_lock_path(repo_dir).write_text("x"))

        repo.query("heads")

        assert progress.messages("warning") == ["Hg command heads left lock"]

    def test_diagnostics_mode_checks_before_and_after(self, repo_dir, progress, runner: ScriptedRunner):
        repo = HgRepository(repo_dir, progress, config=HgSyncConfig(diagnostics=True), runner=runner)
        store_lock_path(repo_dir).write_text("x")

        repo.execute(10, "status")

        assert progress.messages("warning") == [
            f"Found a lock before executing: status -R {repo.path}.",
            f"status -R {repo.path} left a lock.",
        ]

    def test_diagnostics_mode_ignores_recover_leftovers(self, repo_dir, progress, runner: ScriptedRunner):
        repo = HgRepository(repo_dir, progress, config=HgSyncConfig(diagnostics=True), runner=runner)
        runner.on("recover", result(), effect=lambda argv: store_lock_path(repo_dir).write_text("x"))

        repo.execute(10, "recover")

        assert progress.messages("warning") == []

    def test_remove_stale_locks_uses_configured_process(self, repo_dir, progress, runner):
        repo = HgRepository(repo_dir, progress, config=HgSyncConfig(lock_process_name="hg-test"), runner=runner)
        working_lock_path(repo_dir).write_text("x")
        checked: list[str] = []
        repo.locks.process_probe = lambda name: checked.append(name) or False

        assert repo.remove_stale_locks()
        assert checked == ["hg-test"]
        assert not repo.has_locks()

    def test_ensure_unlocked_raises_while_hg_runs(self, repo, repo_dir: Path):
        working_lock_path(repo_dir).write_text("x")
        repo.locks.process_probe = lambda name: True

        with pytest.raises(LockHeld) as exc_info:
            repo.ensure_unlocked()

        assert exc_info.value.lock_path == str(working_lock_path(repo_dir))
        assert repo.has_locks()


class TestReachability:
    """Tests for the reachability check on the handle."""

    def test_ensure_reachable_passes_network_settings(self, repo_dir, progress, runner, monkeypatch):
        seen: list[tuple[str, dict]] = []

        def fake_can_reach(uri, progress, **kwargs):
            seen.append((uri, kwargs))
            return True

        monkeypatch.setattr("hgsync.core.network.can_reach_remote", fake_can_reach)
        config = HgSyncConfig(network={"control_host": "example.net", "ping_timeout_seconds": 1})
        repo = HgRepository(repo_dir, progress, config=config, runner=runner)

        repo.ensure_reachable("https://hg.example.org/p")

        assert seen == [("https://hg.example.org/p", {"control_host": "example.net", "ping_timeout_seconds": 1})]

    def test_ensure_reachable_raises(self, repo, monkeypatch):
        monkeypatch.setattr("hgsync.core.network.can_reach_remote", lambda uri, progress, **kw: False)

        with pytest.raises(NetworkUnavailable, match="hg.example.org"):
            repo.ensure_reachable("https://hg.example.org/p")


# ==============================================================================
# Diagnostics
# ==============================================================================


class TestDiagnostics:
    """Tests for the diagnostic dumps."""

    def test_local_dump_sections(self, repo, runner: ScriptedRunner, progress: RecordingProgress, repo_dir: Path):
        runner.on("version", result(stdout=HG_VERSION))
        runner.on("heads", result(stdout=changeset("2", "ccc") + changeset("1", "bbb")))
        runner.on("verify", result(stdout="checked 3 changesets"))
        (repo_dir / ".hg" / "hgrc").write_text("[ui]\nusername = bob\n")

        repo.get_diagnostic_information()

        text = progress.text
        assert "Mercurial Distributed SCM" in text
        assert f"path = {repo.path}" in text
        assert "No .hgignore found" in text
        assert "username = bob" in text
        assert "have not been merged together" in text
        assert progress.messages("status")[-1] == "Done."
        assert "verify" in runner.subcommands()
        assert runner.timeout_for("showconfig") == repo.config.timeouts.diagnostic_seconds

    def test_failed_section_does_not_stop_dump(self, repo, runner: ScriptedRunner, progress: RecordingProgress):
        """A section that times out is reported; the rest still runs."""
        runner.on("showconfig", result(exit_code=-1, did_time_out=True))

        repo.get_diagnostic_information()

        assert any(e.startswith("Could not get config:") for e in progress.messages("error"))
        assert "manifest" in runner.subcommands()
        assert progress.messages("status")[-1] == "Done."

    def test_log_falls_back_without_graph(self, repo, runner: ScriptedRunner):
        runner.on("log", result(stderr="hg log: option -G not recognized", exit_code=255), contains=["-G"])

        repo.get_diagnostic_information()

        assert runner.commands("log")[-1] == ["log", "-R", repo.path, "-l", "100"]

    def test_remote_dump(self, repo, runner: ScriptedRunner, progress: RecordingProgress):
        repo.get_diagnostic_information_for_remote_project("https://hg.example.org/p")

        assert "remote url = https://hg.example.org/p" in progress.messages("message")
        assert runner.subcommands() == ["version", "showconfig"]
