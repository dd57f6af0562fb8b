"""Dependency resolution.

Maps every raw dependency identifier of every unit to one of:
- a registered unit (a graph edge, stored as the dependency's target name)
- a prebuilt archive under $GOROOT/pkg or a $GOPATH/pkg directory (no edge;
  its timestamp becomes a staleness floor for the dependent)
- a fetchable remote package (fetched before the dependent builds, when
  fetching is enabled)

Anything else is unresolved, which breaks the owning unit only.
"""

import logging
from typing import Optional

from gbuild.build.build_context import RunConfig, ToolchainEnv
from gbuild.build.error_collector import ErrorCollector

from .errors import UnresolvedDependencyError
from .models import FailureKind, Strategy, Unit, stat_time
from .registry import UnitRegistry
from .source_deps import remove_dups

logger = logging.getLogger(__name__)


def is_fetchable(dep: str) -> bool:
    """Whether a dependency names a remote package (first element looks like a host)."""
    host = dep.split("/", 1)[0]
    return "." in host.strip(".")


def prebuilt_time(dep: str, env: ToolchainEnv) -> int:
    """Modification time of an installed archive for `dep`, 0 if none exists."""
    candidates = [env.goroot_pkg_dir] + [env.gopath_pkg_dir(gp) for gp in env.gopaths]
    for pkg_dir in candidates:
        when = stat_time(pkg_dir / f"{dep}.a")
        if when:
            return when
    return 0


def select_strategy(unit: Unit, config: RunConfig) -> Strategy:
    """Pick the backend strategy for a unit. Called once, during resolution."""
    if (config.makefiles or unit.must_use_makefile) and unit.has_makefile:
        return Strategy.MAKEFILE
    if unit.is_cgo:
        return Strategy.CGO
    return Strategy.DIRECT


class DependencyResolver:
    """Links units to their dependencies through the registry.

    Usage:
        resolver = DependencyResolver(registry, env, config, collector)
        resolver.resolve_all()
    """

    def __init__(self, registry: UnitRegistry, env: ToolchainEnv, config: RunConfig, collector: ErrorCollector) -> None:
        self.registry = registry
        self.env = env
        self.config = config
        self.collector = collector

    def resolve_all(self) -> list[Unit]:
        """Resolve every registered unit.

        Returns:
            Units left with unresolved dependencies.
        """
        broken = []
        for unit in self.registry.units():
            if not self.resolve(unit):
                broken.append(unit)
        return broken

    def resolve(self, unit: Unit) -> bool:
        """Resolve one unit's dependencies and select its backend strategy.

        Returns:
            False if some dependency could not be resolved (the unit is then
            marked failed with FailureKind.UNRESOLVED).
        """
        unit.dep_targets, missing = self._check(unit, unit.deps)
        test_missing: list[str] = []
        if self.config.test:
            unit.test_dep_targets, test_missing = self._check(unit, unit.test_deps)
        unit.strategy = select_strategy(unit, self.config)
        unit.fetch_deps = remove_dups(unit.fetch_deps)
        if unit.needs_build:
            unit.needs_install = True

        unit.unresolved = remove_dups(missing + test_missing)
        if not unit.unresolved:
            return True

        error = UnresolvedDependencyError(unit.target, unit.unresolved, self._hint(unit.unresolved))
        unit.mark_failed(FailureKind.UNRESOLVED, str(error))
        self.collector.add_exception(error, "resolve", unit.dir, unit.target)
        logger.debug("Unresolved dependencies for %s: %s", unit.target, unit.unresolved)
        return False

    def _hint(self, missing: list[str]) -> str:
        if not self.config.fetch and any(is_fetchable(dep) for dep in missing):
            return "try using -g"
        return "maybe you aren't in the root?"

    def _check(self, unit: Unit, deps: list[str]) -> tuple[list[str], list[str]]:
        edges: list[str] = []
        missing: list[str] = []
        for dep in deps:
            resolved = self._resolve_one(unit, dep)
            if resolved is None:
                missing.append(dep)
            elif resolved:
                edges.append(resolved)
        return remove_dups(edges), missing

    def _resolve_one(self, unit: Unit, dep: str) -> Optional[str]:
        """Returns the dependency's target for an edge, "" when satisfied without one, None if unresolved."""
        if dep in self.registry:
            return dep

        when = prebuilt_time(dep, self.env)
        if when:
            unit.prebuilt_time = max(unit.prebuilt_time, when)

        if is_fetchable(dep):
            if self.config.fetch_update:
                unit.fetch_deps.append(dep)
                unit.needs_build = True
                unit.force_build = True
            if not when:
                if not self.config.fetch:
                    return None
                unit.fetch_deps.append(dep)
                unit.needs_fetch = True
                unit.needs_build = True
                unit.force_build = True
            return ""

        return "" if when else None
