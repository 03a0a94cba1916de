from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from keywire._internal.definitions import Definition
from keywire._internal.dependencies import Binding, DependencySpecParser
from keywire.exceptions import KeywireCycleError, KeywireUnknownKeyError


@dataclass(slots=True)
class GraphNode:
    """One key of a resolution graph with its incoming and outgoing edges."""

    key: str
    definition: Definition
    bindings: tuple[Binding, ...]
    """Parsed dependency bindings in declaration order."""
    dependencies: tuple[str, ...]
    """Unique source keys of ``bindings``, in first-seen order."""
    dependents: list[str] = field(default_factory=list)
    """Keys in the same graph that depend on this one."""

    @property
    def in_degree(self) -> int:
        """Number of dependencies that must settle before this node can run."""
        return len(self.dependencies)


@dataclass(frozen=True, slots=True)
class ResolutionGraph:
    """The validated, acyclic dependency closure of a set of requested keys."""

    requested: tuple[str, ...]
    nodes: Mapping[str, GraphNode]

    def topological_order(self) -> list[str]:
        """Return keys so that every key comes after all of its dependencies.

        Ties keep discovery order, so the result is deterministic for a given
        store and request.
        """
        remaining = {key: node.in_degree for key, node in self.nodes.items()}
        ready = deque(key for key, degree in remaining.items() if degree == 0)
        order: list[str] = []
        while ready:
            key = ready.popleft()
            order.append(key)
            for dependent in self.nodes[key].dependents:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
        return order

    def __contains__(self, key: object) -> bool:
        return key in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)


class ResolutionGraphBuilder:
    """Expands requested keys into their transitive dependency graph.

    The builder works on an explicit registry snapshot so dynamic ``depends``
    callables see a stable key set for the whole build.
    """

    def __init__(
        self,
        definitions: Mapping[str, Definition],
        parser: DependencySpecParser | None = None,
    ) -> None:
        self._definitions = definitions
        self._known_keys = tuple(definitions)
        self._parser = parser or DependencySpecParser()

    def build(self, requested: Iterable[str]) -> ResolutionGraph:
        """Build the graph rooted at ``requested``.

        Raises:
            KeywireUnknownKeyError: If a requested or depended-on key has no
                definition.
            KeywireCycleError: If a key transitively depends on itself.
            KeywireInvalidDependencySpecError: If a ``depends`` declaration is
                malformed.

        """
        requested_keys = tuple(dict.fromkeys(requested))
        nodes: dict[str, GraphNode] = {}
        for key in requested_keys:
            self._expand(key=key, required_by=None, path=[], nodes=nodes)

        for node in nodes.values():
            for dependency in node.dependencies:
                nodes[dependency].dependents.append(node.key)

        return ResolutionGraph(requested=requested_keys, nodes=MappingProxyType(nodes))

    def _expand(
        self,
        *,
        key: str,
        required_by: str | None,
        path: list[str],
        nodes: dict[str, GraphNode],
    ) -> None:
        if key in nodes:
            return

        if key in path:
            raise KeywireCycleError([*path[path.index(key) :], key])

        definition = self._definitions.get(key)
        if definition is None:
            raise KeywireUnknownKeyError(key, required_by)

        bindings = self._parser.parse(definition.depends, self._known_keys)
        dependencies = tuple(dict.fromkeys(binding.source_key for binding in bindings))

        path.append(key)
        for dependency in dependencies:
            self._expand(key=dependency, required_by=key, path=path, nodes=nodes)
        path.pop()

        nodes[key] = GraphNode(
            key=key,
            definition=definition,
            bindings=bindings,
            dependencies=dependencies,
        )
