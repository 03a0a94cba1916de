from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from keywire._internal.dependencies import DependencySpec
from keywire._internal.factories import Factory, FactoryStyle
from keywire.exceptions import KeywireUnknownKeyError


@dataclass(frozen=True, kw_only=True, slots=True)
class Definition:
    """A registered factory and its dependency declaration."""

    key: str
    """The unique key the factory's value is resolved under."""
    factory: Factory
    """The user factory, in any supported completion style."""
    depends: DependencySpec | None = None
    """The raw ``depends`` declaration; parsed on every graph build."""
    style: FactoryStyle = FactoryStyle.DIRECT
    """The completion style detected when the definition was created."""
    passes_dependencies: bool = False
    """Whether the factory receives the dependency mapping as its first argument."""

    @property
    def has_dynamic_depends(self) -> bool:
        return callable(self.depends)


class DefinitionStore:
    """Holds all definitions registered in the container.

    Writes are serialized; redefining a key replaces its definition but keeps
    the key's original position in iteration order.
    """

    def __init__(self) -> None:
        self._definitions: dict[str, Definition] = {}
        self._lock = threading.RLock()

    def define(self, definition: Definition) -> Definition | None:
        """Add or replace a definition and return the one it replaced, if any."""
        with self._lock:
            previous = self._definitions.get(definition.key)
            self._definitions[definition.key] = definition
            return previous

    def lookup(self, key: str, *, required_by: str | None = None) -> Definition:
        """Get the definition for ``key`` or raise ``KeywireUnknownKeyError``."""
        definition = self._definitions.get(key)
        if definition is None:
            raise KeywireUnknownKeyError(key, required_by)
        return definition

    def find(self, key: str) -> Definition | None:
        """Get the definition for ``key``, if it exists."""
        return self._definitions.get(key)

    def keys(self) -> tuple[str, ...]:
        """Get all known keys in definition order."""
        with self._lock:
            return tuple(self._definitions)

    def snapshot(self) -> Mapping[str, Definition]:
        """Get a read-only point-in-time copy of the registry."""
        with self._lock:
            return MappingProxyType(dict(self._definitions))

    def __contains__(self, key: object) -> bool:
        return key in self._definitions

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._definitions)
