"""Git plumbing adapter for the state branch store.

Provides:
- Bare repository initialization and hook installation
- Commit reference resolution (rev-parse)
- Branch listing and existence checks (for-each-ref, show-ref)
- Ref updates, deletions and multi-ref transactions (update-ref)
- Head commit labels (log)
"""
import logging
import re
import shlex
import subprocess
from pathlib import Path
from typing import Iterable, Mapping, Optional

from ..errors import RefResolutionError, SysgitError
from ..utils.logging_config import timed
from ..utils.retry import with_retry

logger = logging.getLogger(__name__)

NULL_HASH = "0" * 40
HASH_RE = re.compile(r"^[0-9a-f]{40}$")

HOOK_TEMPLATE = """#!/bin/sh
# Generated by "sysgit init"; local changes are overwritten.
exec {command} {hook} "$@"
"""

HOOKS = {
    "update": "git-hook-update",
    "pre-receive": "git-hook-pre-receive",
}


class GitError(SysgitError):
    """Exception raised for git operation failures."""
    pass


class RefLockError(GitError):
    """A ref lock file is held by another process."""
    pass


def is_hash(value: str) -> bool:
    """Check for a full 40-hex commit hash."""
    return bool(HASH_RE.match(value))


class RefStore:
    """
    Thin wrapper over the git plumbing commands sysgit relies on.

    The store is a bare repository; state branch ``a/b`` is the ref
    ``<ref_prefix>a/b``.
    """

    def __init__(
        self,
        repo_path: Path,
        ref_prefix: str = "refs/heads/",
        env: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize RefStore.

        Args:
            repo_path: Path to the bare repository
            ref_prefix: Namespace of the state branch refs
            env: Environment for git subprocesses (default: inherited)
        """
        self.repo_path = Path(repo_path)
        self.ref_prefix = ref_prefix
        self.env = dict(env) if env is not None else None

    def _run_git(
        self,
        *args: str,
        check: bool = True,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """Run a git command against the bare repository."""
        cmd = ["git", f"--git-dir={self.repo_path}"] + list(args)
        logger.debug(f"Running: {' '.join(cmd)}")

        result = subprocess.run(
            cmd,
            input=input,
            capture_output=True,
            text=True,
            env=self.env,
            check=False,  # We'll handle errors ourselves
        )

        if check and result.returncode != 0:
            stderr = result.stderr.strip()
            logger.debug(f"Git command failed: {stderr}")
            if ".lock'" in stderr and "File exists" in stderr:
                raise RefLockError(f"git {args[0]}: {stderr}")
            raise GitError(f"git {args[0]} failed: {stderr}")

        return result

    def ref_name(self, branch: str) -> str:
        return self.ref_prefix + branch

    def branch_name(self, ref: str) -> Optional[str]:
        """Strip the ref prefix; None when ``ref`` is outside the namespace."""
        if not ref.startswith(self.ref_prefix):
            return None
        return ref[len(self.ref_prefix):]

    # === Repository lifecycle ===

    def is_initialized(self) -> bool:
        """Check if the bare repository exists."""
        return (self.repo_path / "HEAD").exists() and (self.repo_path / "objects").is_dir()

    def init(self) -> bool:
        """
        Initialize the bare repository if not already done.

        Returns:
            True if newly initialized, False if already exists
        """
        if self.is_initialized():
            logger.debug("Store already initialized")
            created = False
        else:
            self.repo_path.mkdir(parents=True, exist_ok=True)
            self._run_git("init", "--bare", "--quiet")
            logger.info(f"Initialized store at {self.repo_path}")
            created = True

        # Identity for commits written by drivers; only fill in what is missing
        for key, value in (("user.name", "sysgit"), ("user.email", "sysgit@localhost")):
            if self._run_git("config", "--get", key, check=False).returncode != 0:
                self._run_git("config", key, value)

        return created

    def install_hooks(self, command: list[str]) -> list[str]:
        """
        Write the update and pre-receive hooks.

        Args:
            command: argv prefix running sysgit (e.g. [python, "-m", "sysgit", ...])

        Returns:
            Names of the hooks whose content changed
        """
        hooks_dir = self.repo_path / "hooks"
        hooks_dir.mkdir(parents=True, exist_ok=True)
        quoted = " ".join(shlex.quote(c) for c in command)

        changed = []
        for hook, subcommand in HOOKS.items():
            path = hooks_dir / hook
            content = HOOK_TEMPLATE.format(command=quoted, hook=subcommand)
            if not path.exists() or path.read_text() != content:
                path.write_text(content)
                changed.append(hook)
            path.chmod(0o755)

        if changed:
            logger.info(f"Installed hooks: {', '.join(changed)}")
        return changed

    # === Resolution ===

    def resolve(self, rev: str) -> str:
        """
        Resolve a ref name or hash to a commit hash.

        The null hash resolves to itself.

        Raises:
            RefResolutionError: If ``rev`` does not name a commit
        """
        if rev == NULL_HASH:
            return rev
        result = self._run_git(
            "rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}", check=False
        )
        commit = result.stdout.strip()
        if result.returncode != 0 or not is_hash(commit):
            raise RefResolutionError(f"cannot resolve commit: {rev}")
        return commit

    def branch_commit(self, branch: str) -> str:
        """Current tip of a state branch, or the null hash."""
        result = self._run_git(
            "rev-parse", "--verify", "--quiet", self.ref_name(branch), check=False
        )
        commit = result.stdout.strip()
        if result.returncode != 0 or not is_hash(commit):
            return NULL_HASH
        return commit

    def branch_exists(self, branch: str) -> bool:
        """Check whether the state branch ref exists."""
        result = self._run_git(
            "show-ref", "--verify", "--quiet", self.ref_name(branch), check=False
        )
        return result.returncode == 0

    def list_refs(self, prefix: str) -> dict[str, str]:
        """Map every ref under ``prefix`` to its hash, sorted by name."""
        result = self._run_git(
            "for-each-ref", "--format=%(objectname) %(refname)", prefix, check=False
        )
        if result.returncode != 0:
            return {}

        refs = {}
        for line in result.stdout.splitlines():
            if not line:
                continue
            commit, _, ref = line.partition(" ")
            refs[ref] = commit
        return refs

    def list_branches(self) -> list[str]:
        """List existing state branches, sorted."""
        return [
            ref[len(self.ref_prefix):]
            for ref in self.list_refs(self.ref_prefix)
        ]

    def head_label(self, commit: str) -> str:
        """Short hash and subject of a commit, for listings."""
        if commit == NULL_HASH:
            return "(no commit)"
        result = self._run_git("log", "-1", "--format=%h %s", commit, check=False)
        if result.returncode != 0:
            return commit[:7]
        return result.stdout.strip()

    # === Updates ===

    @with_retry((RefLockError,))
    def _update(self, *args: str, input: Optional[str] = None) -> None:
        """Run a ref-writing command, retrying while a ref is locked."""
        self._run_git(*args, input=input)

    @timed("update-ref")
    def update_ref(self, ref: str, new: str, old: Optional[str] = None) -> None:
        """
        Point ``ref`` at ``new``.

        Args:
            ref: Full ref name
            new: New commit hash
            old: Expected current value (null hash: must not exist)
        """
        args = ["update-ref", "-m", "sysgit", ref, new]
        if old is not None:
            args.append(old)
        self._update(*args)

    @timed("delete-ref")
    def delete_ref(self, ref: str) -> None:
        self._update("update-ref", "-d", ref)

    @timed("update-ref-tx")
    def transaction(
        self,
        updates: Iterable[tuple[str, str]] = (),
        deletes: Iterable[str] = (),
    ) -> None:
        """
        Apply several ref changes in one update-ref transaction.

        Either every change lands or none does.
        """
        lines = [f"update {ref} {new}" for ref, new in updates]
        lines += [f"delete {ref}" for ref in deletes]
        self._update("update-ref", "--stdin", input="\n".join(lines) + "\n")

