from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
import threading
from collections.abc import Awaitable, Callable, Generator
from dataclasses import dataclass
from enum import Enum, auto
from inspect import Parameter
from typing import TYPE_CHECKING, Any, TypeAlias

from typing_extensions import TypeIs

from keywire.exceptions import KeywireFactoryError, KeywireInvalidDefinitionError

if TYPE_CHECKING:
    from keywire._internal.definitions import Definition

logger = logging.getLogger(__name__)

Factory: TypeAlias = Callable[..., Any]
"""A user factory in any of the supported completion styles."""

DoneCallback: TypeAlias = Callable[..., None]
"""The ``done(error, value)`` callable handed to callback-style factories."""

_POSITIONAL_KINDS = (Parameter.POSITIONAL_ONLY, Parameter.POSITIONAL_OR_KEYWORD)
_DEFERRED_PARAMETER_NAME = "deferred"


class FactoryStyle(Enum):
    """How a factory reports its result."""

    DIRECT = auto()
    """Returns the value, or an awaitable that is awaited and flattened."""

    ASYNC = auto()
    """An ``async def`` function; its coroutine is awaited and flattened."""

    CALLBACK = auto()
    """Takes a trailing ``done(error, value)`` callable."""

    DEFERRED = auto()
    """Takes a trailing :class:`Deferred` controller."""


@dataclass(frozen=True, slots=True)
class FactoryShape:
    """Signature facts about a factory, computed once at definition time."""

    style: FactoryStyle
    passes_dependencies: bool
    """Whether the dependency mapping is passed as the first positional argument."""


class Deferred:
    """A settle-once controller handed to deferred-style factories.

    ``resolve`` and ``reject`` may be called from any thread. Only the first
    settlement counts; later calls are ignored.
    """

    def __init__(self, *, key: str, loop: asyncio.AbstractEventLoop) -> None:
        self._key = key
        self._loop = loop
        self._future: asyncio.Future[Any] = loop.create_future()
        self._settled = False
        self._lock = threading.Lock()

    @property
    def key(self) -> str:
        return self._key

    @property
    def settled(self) -> bool:
        return self._settled

    def resolve(self, value: Any = None) -> None:
        """Settle the factory with ``value``."""
        self._settle(value=value, error=None)

    def reject(self, error: object) -> None:
        """Fail the factory with ``error``.

        Non-exception errors are reported as :class:`KeywireFactoryError`
        carrying their ``repr``.
        """
        if not isinstance(error, BaseException):
            error = KeywireFactoryError(self._key, f"rejected with {error!r}")
        self._settle(value=None, error=error)

    def callback(self) -> DoneCallback:
        """Return a node-style ``done(error, value)`` callable bound to this controller."""

        def done(error: object = None, value: Any = None) -> None:
            if error is not None:
                self.reject(error)
            else:
                self.resolve(value)

        return done

    def __await__(self) -> Generator[Any, None, Any]:
        return self._future.__await__()

    def _settle(self, *, value: Any, error: BaseException | None) -> None:
        with self._lock:
            if self._settled:
                logger.debug("Ignoring repeated settlement of factory for key %r", self._key)
                return
            self._settled = True
        self._loop.call_soon_threadsafe(self._apply, value, error)

    def _apply(self, value: Any, error: BaseException | None) -> None:
        if self._future.done():
            return
        if error is not None:
            self._future.set_exception(error)
        else:
            self._future.set_result(value)


def is_future_like(value: object) -> TypeIs[Awaitable[Any] | concurrent.futures.Future[Any]]:
    """Tell whether ``value`` is something to wait on rather than a settled value."""
    return isinstance(value, concurrent.futures.Future) or inspect.isawaitable(value)


async def _wait(value: Awaitable[Any] | concurrent.futures.Future[Any]) -> Any:
    if isinstance(value, concurrent.futures.Future):
        return await asyncio.wrap_future(value)
    return await value


@dataclass(slots=True)
class FactoryAdapter:
    """Invokes factories of every completion style through one async contract."""

    def inspect(self, factory: Factory, *, has_dependencies: bool) -> FactoryShape:
        """Detect the completion style of ``factory``.

        A factory whose definition declares ``depends`` receives the dependency
        mapping as its first positional argument. One extra required positional
        parameter marks a callback-style factory, or a deferred-style one when
        that parameter is named ``deferred`` or annotated with ``Deferred``.

        Raises:
            KeywireInvalidDefinitionError: If the factory requires more positional
                arguments than the engine can supply.

        """
        try:
            signature = inspect.signature(factory)
        except (TypeError, ValueError):
            # Some builtins have no introspectable signature.
            return FactoryShape(style=FactoryStyle.DIRECT, passes_dependencies=has_dependencies)

        parameters = list(signature.parameters.values())
        positional = [parameter for parameter in parameters if parameter.kind in _POSITIONAL_KINDS]
        required = [parameter for parameter in positional if parameter.default is Parameter.empty]
        has_var_positional = any(
            parameter.kind is Parameter.VAR_POSITIONAL for parameter in parameters
        )

        passes_dependencies = has_dependencies and (bool(positional) or has_var_positional)
        expected = 1 if passes_dependencies else 0

        if len(required) > expected + 1:
            msg = (
                f"Factory {_factory_name(factory)} requires {len(required)} positional "
                f"arguments; at most {expected + 1} can be supplied."
            )
            raise KeywireInvalidDefinitionError(msg)

        if len(required) == expected + 1:
            trailing = required[expected]
            if self._is_deferred_parameter(trailing):
                return FactoryShape(style=FactoryStyle.DEFERRED, passes_dependencies=passes_dependencies)
            return FactoryShape(style=FactoryStyle.CALLBACK, passes_dependencies=passes_dependencies)

        if inspect.iscoroutinefunction(factory):
            return FactoryShape(style=FactoryStyle.ASYNC, passes_dependencies=passes_dependencies)
        return FactoryShape(style=FactoryStyle.DIRECT, passes_dependencies=passes_dependencies)

    async def invoke(self, definition: Definition, dependencies: dict[str, Any]) -> Any:
        """Run the factory of ``definition`` and return its settled value.

        A synchronous raise, a failed awaitable, and an error reported through
        ``done`` or ``Deferred.reject`` all surface as the raised exception.
        """
        args: tuple[Any, ...] = (dependencies,) if definition.passes_dependencies else ()
        style = definition.style
        logger.debug("Invoking %s factory for key %r", style.name.lower(), definition.key)

        if style is FactoryStyle.CALLBACK or style is FactoryStyle.DEFERRED:
            deferred = Deferred(key=definition.key, loop=asyncio.get_running_loop())
            controller = deferred if style is FactoryStyle.DEFERRED else deferred.callback()
            returned = definition.factory(*args, controller)
            if is_future_like(returned):
                # an ``async def`` factory may settle the controller after awaiting
                await _wait(returned)
            return await deferred

        result = definition.factory(*args)
        while is_future_like(result):
            result = await _wait(result)
        return result

    def _is_deferred_parameter(self, parameter: Parameter) -> bool:
        if parameter.name == _DEFERRED_PARAMETER_NAME:
            return True
        annotation = parameter.annotation
        if annotation is Deferred:
            return True
        # postponed annotations arrive as strings
        return isinstance(annotation, str) and annotation.rsplit(".", 1)[-1] == "Deferred"


def _factory_name(factory: Factory) -> str:
    return getattr(factory, "__qualname__", None) or repr(factory)
