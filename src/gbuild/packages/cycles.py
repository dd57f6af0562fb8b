"""Cycle detection over the resolved dependency graph.

Runs before any backend side effect. Build edges are always followed; test
edges only when tests are requested, and a unit's test edge to itself (an
external test package importing the package under test) is ignored.
"""

from .errors import CycleError
from .registry import UnitRegistry

WHITE, GRAY, BLACK = 0, 1, 2


def _edges(registry: UnitRegistry, target: str, include_tests: bool) -> list[str]:
    unit = registry[target]
    edges = list(unit.dep_targets)
    if include_tests:
        edges.extend(dep for dep in unit.test_dep_targets if dep != target and dep not in edges)
    return [dep for dep in edges if dep in registry]


def detect_cycles(registry: UnitRegistry, include_tests: bool = False) -> list[list[str]]:
    """Find every cycle reachable through a back edge.

    Uses DFS with coloring (white/gray/black). Each back edge yields one
    cycle path that starts and ends at the repeated target, e.g.
    ["a", "b", "a"].

    Args:
        registry: Registry with resolved dep_targets / test_dep_targets
        include_tests: Also follow test dependency edges

    Returns:
        Detected cycles, in discovery order; empty if the graph is acyclic.
    """
    color: dict[str, int] = {target: WHITE for target in registry.targets()}
    cycles: list[list[str]] = []

    # Iterative DFS: dependency chains can be deeper than the recursion limit
    for root in registry.targets():
        if color[root] != WHITE:
            continue
        path: list[str] = [root]
        stack = [iter(_edges(registry, root, include_tests))]
        color[root] = GRAY
        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                color[path.pop()] = BLACK
                continue
            if color[dep] == GRAY:
                # Found a back edge - cycle detected
                cycles.append(path[path.index(dep) :] + [dep])
            elif color[dep] == WHITE:
                color[dep] = GRAY
                path.append(dep)
                stack.append(iter(_edges(registry, dep, include_tests)))
    return cycles


def check_cycles(registry: UnitRegistry, include_tests: bool = False) -> None:
    """Validate that the dependency graph is acyclic.

    Raises:
        CycleError: Carrying every detected cycle and the blocked targets.
    """
    cycles = detect_cycles(registry, include_tests)
    if cycles:
        raise CycleError(cycles)
