from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal, TypeAlias

from keywire.exceptions import KeywireInvalidDependencySpecError

AliasString: TypeAlias = str
"""A ``"key"`` or ``"key as alias"`` string."""

DependsFunction: TypeAlias = Callable[[Any, str, int], Any]
"""A ``(accumulator, candidate_key, index) -> accumulator`` reducer over known keys."""

DependencySpec: TypeAlias = (
    AliasString | Sequence[AliasString] | Mapping[str, Literal[True] | str] | DependsFunction
)
"""Every accepted shape of a ``depends`` declaration."""

_ALIAS_KEYWORD = "as"
_ALIASED_TOKEN_COUNT = 3


@dataclass(frozen=True, slots=True)
class Binding:
    """A dependency edge: the value of ``source_key`` exposed to a factory as ``alias``."""

    source_key: str
    alias: str


@dataclass(slots=True)
class DependencySpecParser:
    """Normalizes ``depends`` declarations into ordered bindings.

    Known keys are passed in explicitly so dynamic ``depends`` callables see the
    store contents at the time of each resolution, not at definition time.
    """

    def parse(
        self,
        spec: DependencySpec | None,
        known_keys: Iterable[str] = (),
    ) -> tuple[Binding, ...]:
        """Parse a dependency spec into bindings.

        Args:
            spec: The ``depends`` value of a definition, or ``None``.
            known_keys: Keys currently defined, in store order. Only consulted
                by callable specs.

        Returns:
            Bindings in declaration order. Source keys are not checked for
            existence here.

        Raises:
            KeywireInvalidDependencySpecError: If the spec is malformed or
                declares the same alias twice.

        """
        if spec is None:
            return ()
        if isinstance(spec, str):
            bindings = [self.parse_alias(spec)]
        elif isinstance(spec, Mapping):
            bindings = self._parse_mapping(spec)
        elif callable(spec):
            bindings = self._parse_function(spec, known_keys)
        elif isinstance(spec, Sequence):
            bindings = self._parse_sequence(spec)
        else:
            msg = (
                "Dependency spec must be a string, a sequence of strings, a mapping or a "
                f"callable, got {type(spec).__name__}."
            )
            raise KeywireInvalidDependencySpecError(msg)

        self._ensure_unique_aliases(bindings)
        return tuple(bindings)

    def parse_alias(self, value: object) -> Binding:
        """Parse a single ``"key"`` or ``"key as alias"`` string."""
        if not isinstance(value, str):
            msg = f"Dependency alias must be a string, got {type(value).__name__}."
            raise KeywireInvalidDependencySpecError(msg)

        tokens = value.split()
        if len(tokens) == 1:
            return Binding(source_key=tokens[0], alias=tokens[0])
        if len(tokens) == _ALIASED_TOKEN_COUNT and tokens[1] == _ALIAS_KEYWORD:
            return Binding(source_key=tokens[0], alias=tokens[2])

        msg = f"Dependency alias {value!r} must look like 'key' or 'key as alias'."
        raise KeywireInvalidDependencySpecError(msg)

    def _parse_sequence(self, spec: Sequence[Any]) -> list[Binding]:
        return [self.parse_alias(item) for item in spec]

    def _parse_mapping(self, spec: Mapping[Any, Any]) -> list[Binding]:
        bindings: list[Binding] = []
        for alias, source in spec.items():
            if not isinstance(alias, str) or not alias:
                msg = f"Dependency mapping alias must be a non-empty string, got {alias!r}."
                raise KeywireInvalidDependencySpecError(msg)
            if source is True:
                bindings.append(Binding(source_key=alias, alias=alias))
            elif isinstance(source, str) and source:
                bindings.append(Binding(source_key=source, alias=alias))
            else:
                msg = (
                    f"Dependency mapping value for alias {alias!r} must be True or a key "
                    f"string, got {source!r}."
                )
                raise KeywireInvalidDependencySpecError(msg)
        return bindings

    def _parse_function(
        self,
        spec: DependsFunction,
        known_keys: Iterable[str],
    ) -> list[Binding]:
        accumulator: Any = []
        for index, key in enumerate(known_keys):
            accumulator = spec(accumulator, key, index)

        if isinstance(accumulator, str) or not isinstance(accumulator, Sequence):
            msg = (
                f"Dynamic dependency spec {_callable_name(spec)} must return a sequence of "
                f"alias strings, got {type(accumulator).__name__}."
            )
            raise KeywireInvalidDependencySpecError(msg)
        return self._parse_sequence(accumulator)

    def _ensure_unique_aliases(self, bindings: Sequence[Binding]) -> None:
        seen: set[str] = set()
        for binding in bindings:
            if binding.alias in seen:
                msg = f"Dependency alias {binding.alias!r} is declared more than once."
                raise KeywireInvalidDependencySpecError(msg)
            seen.add(binding.alias)


def _callable_name(obj: Callable[..., Any]) -> str:
    return getattr(obj, "__qualname__", None) or repr(obj)
