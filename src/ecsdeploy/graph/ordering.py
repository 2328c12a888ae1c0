"""Deterministic topological ordering shared by units and resources."""

from __future__ import annotations

from typing import Iterable, Mapping

from ecsdeploy.core.errors import ConfigurationError


def topological_order(
    nodes: Iterable[str],
    depends_on: Mapping[str, Iterable[str]],
    kind: str = "node",
) -> list[str]:
    """
    Order nodes so that every node follows the nodes it depends on.

    Ties are broken by the order in which nodes were given, so the same
    declarations always evaluate in the same order.

    Args:
        nodes: Node names in declaration order
        depends_on: Map of node -> names it depends on
        kind: Noun used in error messages ("unit", "resource")

    Raises:
        ConfigurationError: On a dependency that is not declared, or a cycle
    """
    ordered_nodes = list(dict.fromkeys(nodes))
    known = set(ordered_nodes)
    remaining: dict[str, set[str]] = {}

    for node in ordered_nodes:
        deps = set(depends_on.get(node, ()))
        missing = sorted(deps - known)
        if missing:
            raise ConfigurationError(
                f"{kind.capitalize()} '{node}' depends on undeclared {kind} '{missing[0]}'",
                details={kind: node, "missing": ", ".join(missing)},
            )
        deps.discard(node)
        remaining[node] = deps

    result: list[str] = []
    done: set[str] = set()
    while len(result) < len(ordered_nodes):
        ready = [n for n in ordered_nodes if n not in done and remaining[n] <= done]
        if not ready:
            cycle = sorted(n for n in ordered_nodes if n not in done)
            raise ConfigurationError(
                f"Dependency cycle between {kind}s: {', '.join(cycle)}",
                details={"cycle": ", ".join(cycle)},
            )
        # Take one at a time so declaration order wins among ready nodes
        node = ready[0]
        result.append(node)
        done.add(node)

    return result
