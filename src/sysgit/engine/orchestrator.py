"""Top-level sysgit operations.

Provides:
- status: compare live state of each branch with its last commit
- commit: export live state of several branches as one atomic batch
- reset: import a commit into live state, branch by branch
- git_hook_update: make a push into the store behave like ``reset --keep``

Each branch is processed from a freshly built binding and driver context;
the only state carried from one branch to the next is the explicit
accumulator (staged ref set, failure list, report).
"""
import logging
import sys
from typing import Optional, Sequence, TextIO

from ..config.settings import Settings
from ..config.tree import Binding, ConfigTree, Disabled, NotConfigured
from ..drivers.base import (
    EXIT_NOTHING_TO_COMMIT,
    Action,
    DriverContext,
    Report,
    ResetMode,
)
from ..drivers.runner import DriverRunner
from ..errors import (
    ConfigError,
    DriverContractViolation,
    DriverFailure,
    SysgitError,
    UsageError,
)
from ..store.refs import NULL_HASH, RefStore, is_hash
from ..store.staging import StagedRefSet
from ..utils.audit_log import log_change
from ..utils.logging_config import timed_section
from .resolver import BranchResolver
from .schema import (
    EXIT_SOFT,
    BranchStatus,
    CommitReport,
    ResetReport,
    StatusReport,
)

logger = logging.getLogger(__name__)

DEFAULT_STATUS_PATTERN = "**"
LISTING_INDENT = " " * 6


class Orchestrator:
    """
    Drive branch resolution and driver invocations for every command.

    Usage:
        orchestrator = Orchestrator.from_settings(settings)
        report = orchestrator.commit(["etc/**"], message="nightly")
    """

    def __init__(
        self,
        store: RefStore,
        tree: ConfigTree,
        runner: DriverRunner,
        staging_prefix: str = "refs/sysgit/staging/",
        out: Optional[TextIO] = None,
    ):
        self.store = store
        self.tree = tree
        self.runner = runner
        self.resolver = BranchResolver(tree, store, runner)
        self.staging_prefix = staging_prefix
        self.out = out if out is not None else sys.stdout

    @classmethod
    def from_settings(cls, settings: Settings, out: Optional[TextIO] = None) -> "Orchestrator":
        store = RefStore(settings.repo_path, settings.ref_prefix)
        return cls(
            store=store,
            tree=ConfigTree(settings.config_dir, store),
            runner=DriverRunner(settings.driver_search_path, settings.base_env),
            staging_prefix=settings.staging_prefix,
            out=out,
        )

    @property
    def git_dir(self) -> str:
        return str(self.store.repo_path)

    def _emit(self, line: str = "") -> None:
        print(line, file=self.out)

    def load_binding(self, branch: str) -> Optional[Binding]:
        """
        Binding of ``branch``; None when the branch is disabled.

        Raises:
            ConfigError: If no driver is configured for the branch
        """
        binding = self.tree.load(branch)
        if isinstance(binding, Disabled):
            logger.info(f"Skipping disabled branch {branch}")
            return None
        if isinstance(binding, NotConfigured):
            raise ConfigError(f"branch not configured: {branch}")
        return binding

    # === status ===

    def status(
        self,
        patterns: Optional[Sequence[str]] = None,
        report: Report = Report.BRANCHES,
        ref: Optional[str] = None,
    ) -> StatusReport:
        """
        Compare live state with the recorded commit of every matching branch.

        Args:
            patterns: Branch patterns (default: every configured branch)
            report: Output verbosity
            ref: Compare against this commit instead of each branch tip
        """
        base = self.store.resolve(ref) if ref else None
        branches = self.resolver.expand(patterns or [DEFAULT_STATUS_PATTERN])
        result = StatusReport()

        for branch in branches:
            binding = self.load_binding(branch)
            if binding is None:
                result.skipped.append(branch)
                continue

            entry = self._branch_status(binding, report, base)
            result.add(entry)
            self._print_status(entry, report)

        if result.failed:
            logger.error(f"Status failed for: {', '.join(result.failed)}")
        return result

    def _branch_status(
        self,
        binding: Binding,
        report: Report,
        base: Optional[str],
    ) -> BranchStatus:
        commit = base or binding.commit
        context = DriverContext.for_binding(
            binding, Action.STATUS, git_dir=self.git_dir, commit=commit, report=report
        )
        try:
            result = self.runner.run(context)
        except (ConfigError, DriverFailure) as e:
            logger.error(f"status {binding.branch}: {e}")
            return BranchStatus(binding.branch, 1, commit, error=str(e))

        entry = BranchStatus(binding.branch, result.exit_code, commit, output=result.stdout)
        if entry.violation:
            logger.error(
                f"status {binding.branch}: driver {binding.driver} returned "
                f"unknown status code {result.exit_code}"
            )
        return entry

    def _print_status(self, entry: BranchStatus, report: Report) -> None:
        if report == Report.QUIET:
            return

        self._emit(f"{entry.sign} {entry.branch}")
        if report == Report.BRANCHES:
            return

        self._emit(f"    @ {self.store.head_label(entry.commit)}")
        for line in entry.output.splitlines():
            self._emit(f"{LISTING_INDENT}{line}")

    # === commit ===

    def commit(
        self,
        patterns: Sequence[str],
        message: str = "",
        author: str = "",
        allow_empty: bool = False,
        existing_only: bool = False,
        stdout: bool = False,
    ) -> CommitReport:
        """
        Commit live state of every matching branch as one batch.

        Branch refs only move once every driver succeeded; a failing driver
        aborts the batch and leaves every branch untouched.

        Raises:
            UsageError: Without patterns
            DriverFailure: A driver exited with an unexpected status
            DriverContractViolation: A driver reported success without a hash
        """
        if not patterns:
            raise UsageError("at least one branch pattern is required")

        branches = self.resolver.expand(patterns, existing_only=existing_only)
        staged = StagedRefSet(self.store, self.staging_prefix)
        result = CommitReport(txid=staged.txid)
        previous: dict[str, str] = {}

        with timed_section("commit-batch", branches=len(branches)):
            for branch in branches:
                try:
                    binding = self.load_binding(branch)
                    if binding is None:
                        result.skipped.append(branch)
                        continue

                    commit = self._commit_branch(binding, message, author, allow_empty)
                except SysgitError:
                    if staged:
                        logger.error(
                            f"Commit aborted at {branch}; abandoned staged "
                            f"branch(es): {', '.join(staged.staged)}"
                        )
                    raise
                if commit is None:
                    result.unchanged.append(branch)
                    continue

                staged.stage(branch, commit)
                previous[branch] = binding.commit

            if not staged:
                logger.warning("No commit happened actually")
                result.exit_code = EXIT_SOFT
                return result

            result.committed = staged.promote()

        for branch, commit in result.committed.items():
            log_change(
                branch, "commit", True,
                old_commit=previous[branch], new_commit=commit, message=message,
            )
            if stdout:
                self._emit(f"{commit} {branch}")
        return result

    def _commit_branch(
        self,
        binding: Binding,
        message: str,
        author: str,
        allow_empty: bool,
    ) -> Optional[str]:
        """Run the commit action; returns the new commit or None when unchanged."""
        branch = binding.branch
        context = DriverContext.for_binding(
            binding, Action.COMMIT, git_dir=self.git_dir,
            message=message, author=author, allow_empty=allow_empty,
        )
        result = self.runner.run(context)

        if result.exit_code == EXIT_NOTHING_TO_COMMIT:
            logger.info(f"{branch}: nothing to commit")
            return None

        if result.exit_code != 0:
            log_change(
                branch, "commit", False, driver=binding.driver,
                old_commit=binding.commit, message=message,
                error=f"exit code {result.exit_code}",
            )
            raise DriverFailure(
                f"commit of {branch} failed: driver {binding.driver} exited "
                f"with {result.exit_code}",
                branch=branch, exit_code=result.exit_code,
            )

        commit = result.stdout.strip()
        if not is_hash(commit):
            raise DriverContractViolation(
                f"commit of {branch}: driver {binding.driver} succeeded "
                f"without printing a commit hash (got {commit[:80]!r})",
                branch=branch, exit_code=result.exit_code,
            )

        logger.info(f"{branch}: committed {commit[:8]}")
        return commit

    # === reset ===

    def reset(
        self,
        patterns: Sequence[str],
        mode: Optional[ResetMode] = None,
        to: Optional[str] = None,
        state_only: bool = False,
    ) -> ResetReport:
        """
        Bring live state of every matching branch to a commit.

        Without ``to`` each branch is reset hard to its own commit. Branches
        fail independently; failures are collected in the report.

        Args:
            patterns: Branch patterns
            mode: Reset mode (default: keep)
            to: Target commit for every branch
            state_only: Update live state only, leave the refs alone
        """
        if not patterns:
            raise UsageError("at least one branch pattern is required")

        if to is None:
            if mode not in (None, ResetMode.HARD):
                logger.warning(f"No target commit: --{mode.value} becomes --hard")
            mode = ResetMode.HARD
            target = None
        else:
            mode = mode or ResetMode.KEEP
            target = self.store.resolve(to)

        branches = self.resolver.expand(patterns)
        result = ResetReport(mode=mode.value, target=target)

        for branch in branches:
            try:
                self._reset_branch(branch, mode, target, state_only, result)
            except SysgitError as e:
                logger.error(f"reset {branch}: {e}")
                result.failed[branch] = str(e)
                log_change(branch, "reset", False, mode=mode.value, new_commit=target, error=str(e))

        if result.failed:
            logger.error(
                f"Reset failed for {len(result.failed)} of {len(branches)} "
                f"branch(es): {', '.join(result.failed)}; "
                f"succeeded: {', '.join(result.succeeded) or 'none'}"
            )
            result.exit_code = EXIT_SOFT
        return result

    def _reset_branch(
        self,
        branch: str,
        mode: ResetMode,
        target: Optional[str],
        state_only: bool,
        result: ResetReport,
    ) -> None:
        binding = self.load_binding(branch)
        if binding is None:
            result.skipped.append(branch)
            return

        commit = target or binding.commit

        if mode != ResetMode.SOFT:
            context = DriverContext.for_binding(
                binding, Action.RESET, git_dir=self.git_dir,
                reset_mode=mode, reset_commit=commit,
            )
            outcome = self.runner.run(context)
            if not outcome.ok:
                raise DriverFailure(
                    f"driver {binding.driver} refused {mode.value} reset "
                    f"(exit code {outcome.exit_code})",
                    branch=branch, exit_code=outcome.exit_code,
                )

        if not state_only and commit != binding.commit:
            ref = self.store.ref_name(branch)
            if commit == NULL_HASH:
                self.store.delete_ref(ref)
            else:
                self.store.update_ref(ref, commit, old=binding.commit)
            result.updated[branch] = commit

        result.succeeded.append(branch)
        log_change(
            branch, "reset", True, driver=binding.driver, mode=mode.value,
            old_commit=binding.commit, new_commit=commit,
        )

    # === hooks ===

    def git_hook_update(self, ref: str, old: str, new: str) -> int:
        """
        Apply a pushed ref update to live state before the store accepts it.

        Returns:
            Exit code for the hook: nonzero makes git reject the update
        """
        branch = self.store.branch_name(ref)
        if branch is None:
            logger.debug(f"Ignoring update of {ref}")
            return 0
        if new == NULL_HASH:
            raise UsageError(f"deleting state branch {branch} is not supported")

        logger.info(f"Push to {branch}: {old[:8]} -> {new[:8]}")
        result = self.reset([branch], mode=ResetMode.KEEP, to=new, state_only=True)
        return result.exit_code
