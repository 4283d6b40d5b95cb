"""Tests for status, commit and reset orchestration."""
import io
import logging

import pytest

from conftest import make_commit, write_config
from sysgit.drivers import Action, DriverResult, Report, ResetMode
from sysgit.engine import EXIT_FAILURE, EXIT_OK, EXIT_SOFT, Orchestrator
from sysgit.errors import (
    ConfigError,
    DriverContractViolation,
    DriverFailure,
    RefResolutionError,
    UsageError,
)
from sysgit.store.refs import NULL_HASH

STAGING = "refs/sysgit/staging/"


@pytest.fixture
def out():
    return io.StringIO()


@pytest.fixture
def orchestrator(store, tree, runner, out):
    return Orchestrator(store, tree, runner, staging_prefix=STAGING, out=out)


@pytest.fixture
def prefix_domains(config_dir):
    """Two flat domains, prefix/a and prefix/b."""
    write_config(config_dir, "prefix/a", "driver = dummy\n")
    write_config(config_dir, "prefix/b", "driver = dummy\n")


class TestCommit:
    """Tests for the atomic multi-branch commit."""

    def test_all_branches_committed(self, orchestrator, store, runner, prefix_domains):
        """Every ref moves and the staging namespace ends up empty."""
        commits = {
            "prefix/a": make_commit(store, "a"),
            "prefix/b": make_commit(store, "b"),
        }
        runner.on(Action.COMMIT, "*", lambda ctx: DriverResult(0, commits[ctx.branch] + "\n"))

        report = orchestrator.commit(["prefix/a", "prefix/b"], message="snap")

        assert report.exit_code == EXIT_OK
        assert report.committed == commits
        assert store.branch_commit("prefix/a") == commits["prefix/a"]
        assert store.branch_commit("prefix/b") == commits["prefix/b"]
        assert store.list_refs(STAGING) == {}

    def test_failure_leaves_every_ref_untouched(self, orchestrator, store, runner, config_dir):
        """When the k-th driver fails no branch moves."""
        for name in ("one", "two", "three"):
            write_config(config_dir, f"sys/{name}", "driver = dummy\n")
        old = make_commit(store, "old")
        for name in ("one", "two", "three"):
            store.update_ref(f"refs/heads/sys/{name}", old)
        fresh = {
            "sys/one": make_commit(store, "new one"),
            "sys/three": make_commit(store, "new three"),
        }
        runner.on(Action.COMMIT, "sys/one", DriverResult(0, fresh["sys/one"]))
        runner.on(Action.COMMIT, "sys/two", DriverResult(3))
        runner.on(Action.COMMIT, "sys/three", DriverResult(0, fresh["sys/three"]))

        with pytest.raises(DriverFailure) as excinfo:
            orchestrator.commit(["sys/one", "sys/two", "sys/three"])

        assert excinfo.value.branch == "sys/two"
        assert excinfo.value.driver_exit == 3
        for name in ("one", "two", "three"):
            assert store.branch_commit(f"sys/{name}") == old
        # The batch stops at the failing branch
        assert runner.branches(Action.COMMIT) == ["sys/one", "sys/two"]

    def test_abort_logs_abandoned_branches(self, orchestrator, store, runner, config_dir, caplog):
        """Branches staged before a failure are named when the batch aborts."""
        for name in ("one", "two"):
            write_config(config_dir, f"sys/{name}", "driver = dummy\n")
        runner.on(Action.COMMIT, "sys/one", DriverResult(0, make_commit(store, "one")))
        runner.on(Action.COMMIT, "sys/two", DriverResult(3))

        with caplog.at_level(logging.ERROR):
            with pytest.raises(DriverFailure):
                orchestrator.commit(["sys/one", "sys/two"])

        assert "Commit aborted at sys/two" in caplog.text
        assert "abandoned staged branch(es): sys/one" in caplog.text

    def test_double_star_end_to_end(self, orchestrator, store, runner, prefix_domains, out, caplog):
        """commit prefix/** over flat domains commits both and exits 0."""
        runner.on(Action.LIST, "*", DriverResult(2))
        commits = {
            "prefix/a": make_commit(store, "a"),
            "prefix/b": make_commit(store, "b"),
        }
        runner.on(Action.COMMIT, "*", lambda ctx: DriverResult(0, commits[ctx.branch]))

        with caplog.at_level(logging.WARNING):
            report = orchestrator.commit(["prefix/**"], stdout=True)

        assert report.exit_code == EXIT_OK
        assert store.list_branches() == ["prefix/a", "prefix/b"]
        assert "No commit happened actually" not in caplog.text
        assert out.getvalue().splitlines() == [
            f"{commits['prefix/a']} prefix/a",
            f"{commits['prefix/b']} prefix/b",
        ]

    def test_nothing_to_commit(self, orchestrator, store, runner, prefix_domains, caplog):
        """Every driver exiting 2 gives the soft exit code and a warning."""
        runner.on(Action.COMMIT, "*", DriverResult(2))

        with caplog.at_level(logging.WARNING):
            report = orchestrator.commit(["prefix/a", "prefix/b"])

        assert report.exit_code == EXIT_SOFT
        assert report.unchanged == ["prefix/a", "prefix/b"]
        assert "No commit happened actually" in caplog.text
        assert store.list_branches() == []

    def test_partial_nothing_to_commit(self, orchestrator, store, runner, prefix_domains):
        commit = make_commit(store, "a")
        runner.on(Action.COMMIT, "prefix/a", DriverResult(0, commit))
        runner.on(Action.COMMIT, "prefix/b", DriverResult(2))

        report = orchestrator.commit(["prefix/a", "prefix/b"])

        assert report.exit_code == EXIT_OK
        assert report.unchanged == ["prefix/b"]
        assert store.list_branches() == ["prefix/a"]

    def test_success_without_hash(self, orchestrator, store, runner, prefix_domains):
        runner.on(Action.COMMIT, "*", DriverResult(0, "done\n"))

        with pytest.raises(DriverContractViolation):
            orchestrator.commit(["prefix/a"])

        assert store.list_branches() == []

    def test_context_passed_to_driver(self, orchestrator, store, runner, prefix_domains):
        commit = make_commit(store, "a")
        runner.on(Action.COMMIT, "*", DriverResult(0, commit))

        orchestrator.commit(["prefix/a"], message="m", author="A <a@b>", allow_empty=True)

        context = runner.calls[-1]
        assert context.message == "m"
        assert context.author == "A <a@b>"
        assert context.allow_empty is True
        assert context.git_dir == str(store.repo_path)

    def test_disabled_branch_skipped(self, orchestrator, store, runner, config_dir):
        write_config(config_dir, "etc", "driver = sysconf\n")
        write_config(config_dir, "etc/shadow", "enabled = false\n")
        commit = make_commit(store, "etc")
        runner.on(Action.COMMIT, "*", DriverResult(0, commit))

        report = orchestrator.commit(["etc/shadow", "etc/passwd"])

        assert report.skipped == ["etc/shadow"]
        assert runner.branches(Action.COMMIT) == ["etc/passwd"]

    def test_not_configured(self, orchestrator):
        with pytest.raises(ConfigError, match="not configured"):
            orchestrator.commit(["var/log"])

    def test_requires_pattern(self, orchestrator):
        with pytest.raises(UsageError):
            orchestrator.commit([])


class TestStatus:
    """Tests for status reporting and exit aggregation."""

    @pytest.mark.parametrize("code,sign", [(0, " "), (1, "!"), (5, "M"), (6, "A"), (7, "D"), (3, "?")])
    def test_sign_printed(self, orchestrator, runner, prefix_domains, out, code, sign):
        runner.on(Action.STATUS, "*", DriverResult(code))

        orchestrator.status(["prefix/a"])

        assert out.getvalue() == f"{sign} prefix/a\n"

    def test_first_code_wins(self, orchestrator, runner, prefix_domains):
        runner.on(Action.STATUS, "prefix/a", DriverResult(5))
        runner.on(Action.STATUS, "prefix/b", DriverResult(5))

        assert orchestrator.status(["prefix/a", "prefix/b"]).exit_code == 5

    def test_differing_codes_collapse(self, orchestrator, runner, prefix_domains):
        runner.on(Action.STATUS, "prefix/a", DriverResult(5))
        runner.on(Action.STATUS, "prefix/b", DriverResult(6))

        assert orchestrator.status(["prefix/a", "prefix/b"]).exit_code == EXIT_FAILURE

    def test_clean_branches(self, orchestrator, runner, prefix_domains):
        runner.on(Action.STATUS, "prefix/a", DriverResult(0))
        runner.on(Action.STATUS, "prefix/b", DriverResult(6))

        assert orchestrator.status(["prefix/a", "prefix/b"]).exit_code == 6

    def test_violation(self, orchestrator, runner, prefix_domains, caplog):
        """Unknown status codes are reported and fail the run."""
        runner.on(Action.STATUS, "*", DriverResult(42))

        with caplog.at_level(logging.ERROR):
            report = orchestrator.status(["prefix/a"])

        assert report.exit_code == EXIT_FAILURE
        assert report.failed == ["prefix/a"]
        assert "unknown status code 42" in caplog.text

    def test_default_pattern(self, orchestrator, runner, prefix_domains):
        """Without patterns every configured branch is inspected."""
        runner.on(Action.LIST, "*", DriverResult(2))

        report = orchestrator.status()

        assert [b.branch for b in report.branches] == ["prefix/a", "prefix/b"]

    def test_quiet(self, orchestrator, runner, prefix_domains, out):
        runner.on(Action.STATUS, "*", DriverResult(5))

        report = orchestrator.status(["prefix/a"], report=Report.QUIET)

        assert report.exit_code == 5
        assert out.getvalue() == ""

    def test_list_report(self, orchestrator, store, runner, prefix_domains, out):
        """Listing reports show the head commit and indented driver output."""
        commit = make_commit(store, "recorded state")
        store.update_ref("refs/heads/prefix/a", commit)
        runner.on(Action.STATUS, "*", DriverResult(5, "M file.conf\n"))

        orchestrator.status(["prefix/a"], report=Report.LIST)

        lines = out.getvalue().splitlines()
        assert lines[0] == "M prefix/a"
        assert lines[1].startswith("    @ ")
        assert lines[1].endswith("recorded state")
        assert lines[2] == "      M file.conf"

    def test_against_ref(self, orchestrator, store, runner, prefix_domains):
        other = make_commit(store, "other")
        store.update_ref("refs/heads/prefix/b", other)

        orchestrator.status(["prefix/a"], ref="prefix/b")

        assert runner.calls[-1].commit == other

    def test_unresolvable_ref(self, orchestrator, prefix_domains):
        with pytest.raises(RefResolutionError):
            orchestrator.status(["prefix/a"], ref="nope")


class TestReset:
    """Tests for per-branch reset."""

    def test_reset_to_commit(self, orchestrator, store, runner, prefix_domains):
        old = make_commit(store, "old")
        new = make_commit(store, "new")
        store.update_ref("refs/heads/prefix/a", old)

        report = orchestrator.reset(["prefix/a"], to=new)

        assert report.exit_code == EXIT_OK
        assert report.mode == "keep"
        assert store.branch_commit("prefix/a") == new
        context = runner.calls[-1]
        assert context.reset_mode == ResetMode.KEEP
        assert context.reset_commit == new
        assert context.commit == old

    def test_failures_are_isolated(self, orchestrator, store, runner, prefix_domains):
        """One refusing branch does not stop its siblings."""
        target = make_commit(store, "target")
        runner.on(Action.RESET, "prefix/a", DriverResult(1))
        runner.on(Action.RESET, "prefix/b", DriverResult(0))

        report = orchestrator.reset(["prefix/a", "prefix/b"], to=target)

        assert report.exit_code == EXIT_SOFT
        assert list(report.failed) == ["prefix/a"]
        assert report.succeeded == ["prefix/b"]
        assert not store.branch_exists("prefix/a")
        assert store.branch_commit("prefix/b") == target

    def test_failure_summary_names_succeeded(self, orchestrator, store, runner, prefix_domains, caplog):
        target = make_commit(store, "target")
        runner.on(Action.RESET, "prefix/a", DriverResult(1))
        runner.on(Action.RESET, "prefix/b", DriverResult(0))

        with caplog.at_level(logging.ERROR):
            orchestrator.reset(["prefix/a", "prefix/b"], to=target)

        assert "Reset failed for 1 of 2 branch(es): prefix/a; succeeded: prefix/b" in caplog.text

    def test_keep_refused_on_divergence(self, orchestrator, store, runner, prefix_domains):
        """A keep reset the driver refuses leaves the ref where it was."""
        old = make_commit(store, "old")
        new = make_commit(store, "new")
        store.update_ref("refs/heads/prefix/a", old)
        runner.on(Action.RESET, "*", DriverResult(1))

        report = orchestrator.reset(["prefix/a"], mode=ResetMode.KEEP, to=new)

        assert report.exit_code == EXIT_SOFT
        assert store.branch_commit("prefix/a") == old

    def test_soft_skips_driver(self, orchestrator, store, runner, prefix_domains):
        new = make_commit(store, "new")

        orchestrator.reset(["prefix/a"], mode=ResetMode.SOFT, to=new)

        assert runner.branches(Action.RESET) == []
        assert store.branch_commit("prefix/a") == new

    def test_no_target_forces_hard(self, orchestrator, store, runner, prefix_domains, caplog):
        """Without a target each branch is reset hard to its own commit."""
        old = make_commit(store, "old")
        store.update_ref("refs/heads/prefix/a", old)

        with caplog.at_level(logging.WARNING):
            report = orchestrator.reset(["prefix/a"], mode=ResetMode.KEEP)

        assert report.mode == "hard"
        assert "becomes --hard" in caplog.text
        context = runner.calls[-1]
        assert context.reset_mode == ResetMode.HARD
        assert context.reset_commit == old
        assert store.branch_commit("prefix/a") == old

    def test_state_only(self, orchestrator, store, runner, prefix_domains):
        new = make_commit(store, "new")

        report = orchestrator.reset(["prefix/a"], to=new, state_only=True)

        assert report.succeeded == ["prefix/a"]
        assert not store.branch_exists("prefix/a")

    def test_reset_to_null_deletes(self, orchestrator, store, runner, prefix_domains):
        old = make_commit(store, "old")
        store.update_ref("refs/heads/prefix/a", old)

        orchestrator.reset(["prefix/a"], mode=ResetMode.HARD, to=NULL_HASH)

        assert not store.branch_exists("prefix/a")

    def test_not_configured_fails_branch(self, orchestrator, store, runner, prefix_domains):
        target = make_commit(store, "t")

        report = orchestrator.reset(["prefix/a", "var/log"], to=target)

        assert "var/log" in report.failed
        assert report.succeeded == ["prefix/a"]


class TestGitHookUpdate:
    """Tests for the update hook entry point."""

    def test_applies_push(self, orchestrator, store, runner, prefix_domains):
        old = make_commit(store, "old")
        new = make_commit(store, "new")
        store.update_ref("refs/heads/prefix/a", old)

        code = orchestrator.git_hook_update("refs/heads/prefix/a", old, new)

        assert code == 0
        context = runner.calls[-1]
        assert context.reset_mode == ResetMode.KEEP
        assert context.reset_commit == new
        # git moves the ref itself once the hook accepts
        assert store.branch_commit("prefix/a") == old

    def test_refusal_rejects_push(self, orchestrator, store, runner, prefix_domains):
        new = make_commit(store, "new")
        runner.on(Action.RESET, "*", DriverResult(1))

        assert orchestrator.git_hook_update("refs/heads/prefix/a", NULL_HASH, new) != 0

    def test_foreign_ref_accepted(self, orchestrator, runner):
        assert orchestrator.git_hook_update("refs/tags/v1", NULL_HASH, "a" * 40) == 0
        assert runner.calls == []

    def test_deletion_refused(self, orchestrator):
        with pytest.raises(UsageError):
            orchestrator.git_hook_update("refs/heads/prefix/a", "a" * 40, NULL_HASH)
