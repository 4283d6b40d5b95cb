"""Branch pattern expansion.

Literal patterns pass through. Single-star patterns are matched against the
branches that exist in the store. Double-star patterns are matched against
the configuration: every driver domain below the literal base of the pattern
is asked to list its branches.
"""
import logging
from typing import Iterable

from ..config.tree import ConfigTree, Disabled, NotConfigured
from ..drivers.base import EXIT_FLAT, Action, DriverContext
from ..drivers.runner import DriverRunner
from ..errors import ConfigError, DriverError, UsageError
from ..patterns import (
    SEGMENT_STAR,
    SPANNING_STAR,
    PatternKind,
    base_prefix,
    classify,
    glob_to_regex,
    validate_pattern,
)
from ..store.refs import RefStore

logger = logging.getLogger(__name__)


class BranchResolver:
    """Expand branch patterns into concrete branch names."""

    def __init__(self, tree: ConfigTree, store: RefStore, runner: DriverRunner):
        self.tree = tree
        self.store = store
        self.runner = runner

    def expand(self, patterns: Iterable[str], existing_only: bool = False) -> list[str]:
        """
        Expand every pattern, keeping the first occurrence of each branch.

        Args:
            patterns: Literal, single-star or double-star patterns
            existing_only: Restrict results to branches that have a ref

        Raises:
            UsageError: On invalid patterns and patterns matching nothing
        """
        patterns = list(patterns)
        branches: list[str] = []
        seen: set[str] = set()
        for pattern in patterns:
            validate_pattern(pattern)
            kind = classify(pattern)
            if kind == PatternKind.LITERAL:
                found = self.expand_literal(pattern, existing_only)
            elif kind == PatternKind.SINGLE_STAR:
                found = self.expand_existing(pattern)
            else:
                found = self.expand_configured(pattern, existing_only)

            for branch in found:
                if branch not in seen:
                    seen.add(branch)
                    branches.append(branch)

        logger.debug(f"Expanded {patterns} to {branches}")
        return branches

    def expand_literal(self, branch: str, existing_only: bool = False) -> list[str]:
        if existing_only and not self.store.branch_exists(branch):
            raise UsageError(f"branch does not exist: {branch}")
        return [branch]

    def expand_existing(self, pattern: str) -> list[str]:
        """Match a single-star pattern against the existing branches."""
        regex = glob_to_regex(pattern, star=SEGMENT_STAR)
        matches = [b for b in self.store.list_branches() if regex.match(b)]
        if not matches:
            raise UsageError(f"pattern does not match any branch: {pattern}")
        return matches

    def domains_for(self, pattern: str) -> list[str]:
        """Driver domains a double-star pattern has to query."""
        base = base_prefix(pattern)
        root = self.tree.resolve_binding_root(base) if base.rstrip("/") else None
        if root is not None:
            return [root]
        return self.tree.driver_domains(base)

    def expand_configured(self, pattern: str, existing_only: bool = False) -> list[str]:
        """Match a double-star pattern against the configured branches."""
        regex = glob_to_regex(pattern, star=SPANNING_STAR)
        matches: list[str] = []

        for domain in self.domains_for(pattern):
            for branch in self.list_domain(domain):
                if regex.match(branch) and branch not in matches:
                    matches.append(branch)

        if existing_only:
            matches = [b for b in matches if self.store.branch_exists(b)]

        if not matches:
            raise UsageError(f"pattern does not match any branch: {pattern}")
        return matches

    def list_domain(self, domain: str) -> list[str]:
        """
        Branches of one driver domain.

        A flat driver (``list`` exits 2) makes the domain a branch itself.
        Problems with one domain are logged and yield nothing, so sibling
        domains are still discovered.
        """
        try:
            binding = self.tree.load(domain)
        except ConfigError as e:
            logger.warning(f"Skipping domain {domain}: {e}")
            return []

        if isinstance(binding, Disabled):
            logger.warning(f"Skipping disabled domain {domain}")
            return []
        if isinstance(binding, NotConfigured):
            logger.warning(f"Skipping domain {domain}: no driver configured")
            return []

        context = DriverContext.for_binding(
            binding, Action.LIST, git_dir=str(self.store.repo_path)
        )
        try:
            result = self.runner.run(context)
        except (ConfigError, DriverError) as e:
            logger.warning(f"Skipping domain {domain}: {e}")
            return []

        if result.exit_code == EXIT_FLAT:
            return [domain]
        if not result.ok:
            logger.warning(
                f"Skipping domain {domain}: list failed with exit code {result.exit_code}"
            )
            return []

        return [f"{domain}/{name.strip().strip('/')}" for name in result.lines]
