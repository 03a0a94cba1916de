from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal, TypeVar, overload

from keywire._internal.background import BackgroundLoop
from keywire._internal.definitions import Definition, DefinitionStore
from keywire._internal.dependencies import DependencySpec, DependencySpecParser
from keywire._internal.factories import Factory, FactoryAdapter
from keywire._internal.graph import ResolutionGraph, ResolutionGraphBuilder
from keywire._internal.lifetimes import Lifetime
from keywire._internal.scheduler import EntryState, InstanceCache, Scheduler
from keywire._internal.timeout import TimeoutGuard, validate_timeout
from keywire.exceptions import (
    KeywireAsyncContextError,
    KeywireInvalidDefinitionError,
)

F = TypeVar("F", bound=Factory)

logger = logging.getLogger(__name__)

_ENTRY_FIELDS = frozenset({"factory", "depends"})
_MISSING: Any = object()


class Container:
    """Define keyed factories and resolve them asynchronously.

    Keys are strings. Each definition pairs a factory with an optional
    ``depends`` declaration naming the keys whose values the factory receives,
    as a ``dict`` keyed by local alias. Factories may return a value, return an
    awaitable, report through a trailing ``done(error, value)`` callback, or
    settle a trailing ``Deferred`` controller.

    ``aresolve`` builds the dependency graph of the requested keys, rejects
    unknown keys and cycles before any factory runs, then invokes every
    factory at most once while values are memoized (see ``Lifetime``).
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        lifetime: Lifetime = Lifetime.SINGLETON,
    ) -> None:
        """Initialize a container.

        Args:
            timeout: Default resolution deadline in milliseconds. ``None``
                waits forever.
            lifetime: Memoization policy. ``Lifetime.SINGLETON`` keeps values
                for the container's lifetime, ``Lifetime.RESOLUTION`` only for
                one ``aresolve`` call.

        Raises:
            KeywireInvalidDefinitionError: If an option is invalid.

        Examples:
            .. code-block:: python

                container = Container(timeout=5000)
                per_call = Container(lifetime=Lifetime.RESOLUTION)

        """
        if not isinstance(lifetime, Lifetime):
            msg = f"Option 'lifetime' must be a Lifetime member, got {lifetime!r}."
            raise KeywireInvalidDefinitionError(msg)

        self._timeout = validate_timeout(timeout)
        self._lifetime = lifetime

        self._definitions = DefinitionStore()
        self._dependency_spec_parser = DependencySpecParser()
        self._factory_adapter = FactoryAdapter()
        self._instance_cache = InstanceCache()
        self._scheduler = Scheduler(self._factory_adapter)
        self._background = BackgroundLoop()

    @property
    def timeout(self) -> float | None:
        return self._timeout

    @property
    def lifetime(self) -> Lifetime:
        return self._lifetime

    # region Definition Methods
    @overload
    def define(self, key: Mapping[str, Any], /) -> None: ...

    @overload
    def define(self, key: str, factory: Factory, /, *, depends: DependencySpec | None = None) -> None: ...

    @overload
    def define(self, key: str, depends: DependencySpec | None, factory: Factory, /) -> None: ...

    @overload
    def define(self, key: str, definition: Mapping[str, Any], /) -> None: ...

    @overload
    def define(self, key: str, /, *, depends: DependencySpec | None = None) -> DefinitionDecorator: ...

    def define(
        self,
        key: str | Mapping[str, Any],
        /,
        *args: Any,
        depends: DependencySpec | None = _MISSING,
    ) -> DefinitionDecorator | None:
        """Register a factory under a key.

        Accepted shapes:

        - ``define(key, factory)``
        - ``define(key, depends, factory)``
        - ``define(key, factory, depends=...)``
        - ``define(key, {"factory": ..., "depends": ...})``
        - ``define({key: factory_or_entry, ...})`` (same as ``define_all``)
        - ``@define(key, depends=...)`` decorator form

        Redefining a key replaces its definition and drops its memoized value.

        Args:
            key: Key to define, or a mapping of keys to definitions.
            *args: Factory, or dependency spec followed by factory, or a
                definition entry mapping.
            depends: Dependency spec, for the single-factory and decorator
                forms.

        Returns:
            ``None``, or a decorator when no factory is given.

        Raises:
            KeywireInvalidDefinitionError: If arguments are invalid.
            KeywireInvalidDependencySpecError: If a static ``depends`` value is
                malformed.

        Examples:
            .. code-block:: python

                container.define("foo", lambda: "FOO")
                container.define("foofoo", "foo as val", lambda deps: deps["val"] * 2)


                @container.define("greeting", depends=["foo"])
                def greeting(deps: dict[str, str]) -> str:
                    return f"hello {deps['foo']}"

        """
        if isinstance(key, Mapping):
            if args or depends is not _MISSING:
                msg = "define(mapping) takes no other arguments."
                raise KeywireInvalidDefinitionError(msg)
            self.define_all(key)
            return None

        if not args:
            return DefinitionDecorator(
                container=self,
                key=key,
                depends=None if depends is _MISSING else depends,
            )

        if len(args) == 1:
            (target,) = args
            if isinstance(target, Mapping):
                if depends is not _MISSING:
                    msg = f"define({key!r}, entry) takes 'depends' from the entry mapping."
                    raise KeywireInvalidDefinitionError(msg)
                self._define(*self._unpack_entry(key, target))
                return None
            self._define(key, None if depends is _MISSING else depends, target)
            return None

        if len(args) == 2:  # noqa: PLR2004
            if depends is not _MISSING:
                msg = f"define({key!r}, depends, factory) got 'depends' twice."
                raise KeywireInvalidDefinitionError(msg)
            dependency_spec, factory = args
            self._define(key, dependency_spec, factory)
            return None

        msg = f"define() takes at most 3 positional arguments, got {len(args) + 1}."
        raise KeywireInvalidDefinitionError(msg)

    def define_all(self, definitions: Mapping[str, Any]) -> None:
        """Register several definitions at once.

        Each value is either a factory or an entry mapping with ``factory`` and
        optional ``depends``. All entries are validated before any is
        registered, so an invalid entry leaves the container unchanged.

        Raises:
            KeywireInvalidDefinitionError: If any entry is invalid.

        Examples:
            .. code-block:: python

                container.define_all(
                    {
                        "character/solo": lambda: "Han Solo",
                        "good": {"depends": "characters", "factory": pick_good},
                    },
                )

        """
        if not isinstance(definitions, Mapping):
            msg = f"define_all() expects a mapping, got {type(definitions).__name__}."
            raise KeywireInvalidDefinitionError(msg)

        prepared: list[Definition] = []
        for key, entry in definitions.items():
            if isinstance(entry, Mapping):
                prepared.append(self._build_definition(*self._unpack_entry(key, entry)))
            else:
                prepared.append(self._build_definition(key, None, entry))

        for definition in prepared:
            self._register(definition)

    def define_value(self, key: str, value: Any) -> None:
        """Register a pre-built value under ``key``.

        Awaitables are stored as-is and awaited on resolution like any other
        factory result.
        """
        self._define(key, None, _ConstantFactory(value))

    def _define(self, key: Any, depends: Any, factory: Any) -> None:
        self._register(self._build_definition(key, depends, factory))

    def _build_definition(self, key: Any, depends: Any, factory: Any) -> Definition:
        if not isinstance(key, str) or not key:
            msg = f"Definition key must be a non-empty string, got {key!r}."
            raise KeywireInvalidDefinitionError(msg)
        if not callable(factory):
            msg = f"Factory for key {key!r} must be callable, got {type(factory).__name__}."
            raise KeywireInvalidDefinitionError(msg)
        if depends is not None and not callable(depends):
            # static specs fail at definition time; dynamic ones on every resolution
            self._dependency_spec_parser.parse(depends)

        shape = self._factory_adapter.inspect(factory, has_dependencies=depends is not None)
        return Definition(
            key=key,
            factory=factory,
            depends=depends,
            style=shape.style,
            passes_dependencies=shape.passes_dependencies,
        )

    def _register(self, definition: Definition) -> None:
        previous = self._definitions.define(definition)
        if previous is not None:
            self._instance_cache.evict(definition.key)
            # also drop failures that originated in the old definition
            self._instance_cache.evict_failures_from(definition.key)
        logger.debug(
            "Defined key %r: style=%s depends=%r replaced=%s",
            definition.key,
            definition.style.name.lower(),
            definition.depends,
            previous is not None,
        )

    def _unpack_entry(self, key: Any, entry: Mapping[str, Any]) -> tuple[Any, Any, Any]:
        unknown_fields = set(entry) - _ENTRY_FIELDS
        if unknown_fields:
            msg = (
                f"Definition entry for key {key!r} has unknown fields "
                f"{sorted(map(str, unknown_fields))}; expected 'factory' and optional 'depends'."
            )
            raise KeywireInvalidDefinitionError(msg)
        if "factory" not in entry:
            msg = f"Definition entry for key {key!r} is missing 'factory'."
            raise KeywireInvalidDefinitionError(msg)
        return key, entry.get("depends"), entry["factory"]

    # endregion Definition Methods

    # region Resolution

    @overload
    async def aresolve(
        self,
        keys: str,
        *,
        timeout: float | None | Literal["from_container"] = "from_container",
    ) -> Any: ...

    @overload
    async def aresolve(
        self,
        keys: Sequence[str],
        *,
        timeout: float | None | Literal["from_container"] = "from_container",
    ) -> dict[str, Any]: ...

    async def aresolve(
        self,
        keys: str | Sequence[str],
        *,
        timeout: float | None | Literal["from_container"] = "from_container",
    ) -> Any:
        """Resolve one key, or several keys at once.

        Args:
            keys: A key, or a sequence of keys.
            timeout: Deadline in milliseconds for this call, ``None`` for no
                deadline, or ``"from_container"`` for the container default.

        Returns:
            The value for a single key, or a ``dict`` of key to value in request
            order for a sequence of keys.

        Raises:
            KeywireUnknownKeyError: If a requested or depended-on key is not
                defined. No factory runs.
            KeywireCycleError: If the requested graph contains a cycle. No
                factory runs.
            KeywireFactoryError: If a factory needed by a requested key failed.
            KeywireTimeoutError: If the deadline passed first. Factories still
                running keep going and populate the cache.

        Examples:
            .. code-block:: python

                foo = await container.aresolve("foo")
                values = await container.aresolve(["foofoo", "foobar"])

        """
        single = isinstance(keys, str)
        requested = self._normalize_keys(keys)
        guard = self._timeout_guard(timeout)

        graph = self.plan(requested)
        cache = self._instance_cache if self._lifetime is Lifetime.SINGLETON else InstanceCache()
        values = await guard.run(self._scheduler.run(graph, cache=cache), keys=requested)
        return values[requested[0]] if single else values

    def resolve(
        self,
        keys: str | Sequence[str],
        *,
        timeout: float | None | Literal["from_container"] = "from_container",
    ) -> asyncio.Future[Any] | concurrent.futures.Future[Any]:
        """Start a resolution and return its future without waiting.

        Inside a running event loop the resolution is a task on that loop. In
        synchronous code it runs on the container's background loop and a
        ``concurrent.futures.Future`` is returned. Every resolution error is
        delivered through the returned future.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return self._background.submit(self.aresolve(keys, timeout=timeout))
        return loop.create_task(self.aresolve(keys, timeout=timeout))

    def resolve_sync(
        self,
        keys: str | Sequence[str],
        *,
        timeout: float | None | Literal["from_container"] = "from_container",
    ) -> Any:
        """Resolve from synchronous code and block until the result is ready.

        The resolution runs on the container's background loop, so factories
        still running when the deadline passes keep going and fill the cache.

        Raises:
            KeywireAsyncContextError: If called while an event loop is running
                in this thread.

        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return self._background.submit(self.aresolve(keys, timeout=timeout)).result()
        msg = "resolve_sync() cannot run inside an event loop; await aresolve() instead."
        raise KeywireAsyncContextError(msg)

    def close(self) -> None:
        """Stop the background loop used by synchronous resolutions.

        Factories still running on it are cancelled and their keys are left
        unresolved. Definitions and memoized values are kept, and a later
        synchronous resolution starts a new background loop.
        """
        self._background.close()

    def plan(self, keys: str | Sequence[str]) -> ResolutionGraph:
        """Build and validate the resolution graph for ``keys`` without running it.

        Raises:
            KeywireUnknownKeyError: If a key is not defined.
            KeywireCycleError: If the graph contains a cycle.

        """
        builder = ResolutionGraphBuilder(self._definitions.snapshot(), self._dependency_spec_parser)
        graph = builder.build(self._normalize_keys(keys))
        logger.debug("Planned %d key(s) from request %r", len(graph), list(graph.requested))
        return graph

    def _normalize_keys(self, keys: str | Sequence[str]) -> tuple[str, ...]:
        if isinstance(keys, str):
            return (keys,)
        requested = tuple(keys)
        for key in requested:
            if not isinstance(key, str):
                msg = f"Keys must be strings, got {key!r}."
                raise KeywireInvalidDefinitionError(msg)
        return requested

    def _timeout_guard(self, timeout: float | None | Literal["from_container"]) -> TimeoutGuard:
        if timeout == "from_container":
            return TimeoutGuard(self._timeout)
        return TimeoutGuard(validate_timeout(timeout))

    # endregion Resolution

    # region Introspection

    def keys(self) -> tuple[str, ...]:
        """Get all defined keys in definition order."""
        return self._definitions.keys()

    def is_resolved(self, key: str) -> bool:
        """Tell whether ``key`` holds a memoized value in the container cache."""
        entry = self._instance_cache.peek(key)
        return entry is not None and entry.state is EntryState.RESOLVED

    def __contains__(self, key: object) -> bool:
        return key in self._definitions

    # endregion Introspection


@dataclass(frozen=True, slots=True)
class DefinitionDecorator:
    """Registers the decorated function as the factory for ``key``."""

    container: Container
    key: str
    depends: DependencySpec | None

    def __call__(self, factory: F) -> F:
        self.container.define(self.key, factory, depends=self.depends)
        return factory


class _ConstantFactory:
    """Zero-argument factory returning a fixed value."""

    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value

    def __call__(self) -> Any:
        return self.value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.value!r})"
