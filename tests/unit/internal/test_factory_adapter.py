from __future__ import annotations

import asyncio
import concurrent.futures
from typing import Any

import pytest

from keywire._internal.definitions import Definition
from keywire._internal.factories import (
    Deferred,
    Factory,
    FactoryAdapter,
    FactoryShape,
    FactoryStyle,
    is_future_like,
)
from keywire.exceptions import KeywireFactoryError, KeywireInvalidDefinitionError


def _definition(adapter: FactoryAdapter, factory: Factory, *, depends: Any = None) -> Definition:
    shape = adapter.inspect(factory, has_dependencies=depends is not None)
    return Definition(
        key="key",
        factory=factory,
        depends=depends,
        style=shape.style,
        passes_dependencies=shape.passes_dependencies,
    )


async def _async_direct(deps: dict[str, Any]) -> str:
    return "async"


def _deferred_by_annotation(deps: dict[str, Any], controller: Deferred) -> None:
    controller.resolve("annotated")


def _callback_with_default(deps: dict[str, Any], done: Any, retries: int = 3) -> None:
    done(None, retries)


class TestInspect:
    @pytest.mark.parametrize(
        ("factory", "has_dependencies", "expected"),
        [
            (lambda: 1, False, FactoryShape(FactoryStyle.DIRECT, passes_dependencies=False)),
            (lambda deps: 1, True, FactoryShape(FactoryStyle.DIRECT, passes_dependencies=True)),
            (lambda done: 1, False, FactoryShape(FactoryStyle.CALLBACK, passes_dependencies=False)),
            (
                lambda deps, done: 1,
                True,
                FactoryShape(FactoryStyle.CALLBACK, passes_dependencies=True),
            ),
            (
                lambda deferred: 1,
                False,
                FactoryShape(FactoryStyle.DEFERRED, passes_dependencies=False),
            ),
            (
                lambda deps, deferred: 1,
                True,
                FactoryShape(FactoryStyle.DEFERRED, passes_dependencies=True),
            ),
            (
                _deferred_by_annotation,
                True,
                FactoryShape(FactoryStyle.DEFERRED, passes_dependencies=True),
            ),
            (_async_direct, True, FactoryShape(FactoryStyle.ASYNC, passes_dependencies=True)),
            (lambda: 1, True, FactoryShape(FactoryStyle.DIRECT, passes_dependencies=False)),
            (lambda *args: 1, True, FactoryShape(FactoryStyle.DIRECT, passes_dependencies=True)),
            (lambda deps=None: 1, True, FactoryShape(FactoryStyle.DIRECT, passes_dependencies=True)),
            (
                _callback_with_default,
                True,
                FactoryShape(FactoryStyle.CALLBACK, passes_dependencies=True),
            ),
            (dict, False, FactoryShape(FactoryStyle.DIRECT, passes_dependencies=False)),
        ],
    )
    def test_detects_style(
        self,
        adapter: FactoryAdapter,
        factory: Factory,
        has_dependencies: bool,  # noqa: FBT001
        expected: FactoryShape,
    ) -> None:
        assert adapter.inspect(factory, has_dependencies=has_dependencies) == expected

    def test_rejects_too_many_required_parameters(self, adapter: FactoryAdapter) -> None:
        with pytest.raises(KeywireInvalidDefinitionError, match="requires 3 positional"):
            adapter.inspect(lambda deps, done, extra: None, has_dependencies=True)

    def test_uninspectable_callable_is_direct(self, adapter: FactoryAdapter) -> None:
        shape = adapter.inspect(print, has_dependencies=False)

        assert shape.style is FactoryStyle.DIRECT


class TestInvoke:
    async def test_direct_value(self, adapter: FactoryAdapter) -> None:
        definition = _definition(adapter, lambda deps: deps["a"] + 1, depends="a")

        assert await adapter.invoke(definition, {"a": 1}) == 2

    async def test_dependency_mapping_is_first_argument(self, adapter: FactoryAdapter) -> None:
        received: list[dict[str, Any]] = []
        definition = _definition(adapter, lambda deps: received.append(deps), depends="a")
        dependencies = {"a": 1}

        await adapter.invoke(definition, dependencies)

        assert received == [dependencies]

    async def test_concurrent_future_is_awaited(self, adapter: FactoryAdapter) -> None:
        future: concurrent.futures.Future[str] = concurrent.futures.Future()
        future.set_result("threaded")
        definition = _definition(adapter, lambda: future)

        assert await adapter.invoke(definition, {}) == "threaded"

    async def test_synchronous_raise_propagates(self, adapter: FactoryAdapter) -> None:
        def broken() -> None:
            msg = "sync"
            raise ValueError(msg)

        with pytest.raises(ValueError, match="sync"):
            await adapter.invoke(_definition(adapter, broken), {})

    async def test_callback_error(self, adapter: FactoryAdapter) -> None:
        definition = _definition(adapter, lambda done: done(KeyError("k")))

        with pytest.raises(KeyError):
            await adapter.invoke(definition, {})

    async def test_callback_with_falsy_value(self, adapter: FactoryAdapter) -> None:
        definition = _definition(adapter, lambda done: done(None, 0))

        assert await adapter.invoke(definition, {}) == 0

    async def test_deferred_reject_non_exception(self, adapter: FactoryAdapter) -> None:
        definition = _definition(adapter, lambda deferred: deferred.reject({"code": 1}))

        with pytest.raises(KeywireFactoryError, match="rejected with"):
            await adapter.invoke(definition, {})

    async def test_deferred_resolve_defaults_to_none(self, adapter: FactoryAdapter) -> None:
        definition = _definition(adapter, lambda deferred: deferred.resolve())

        assert await adapter.invoke(definition, {}) is None

    async def test_deferred_reports_settled_state(self) -> None:
        deferred = Deferred(key="k", loop=asyncio.get_running_loop())
        assert not deferred.settled

        deferred.resolve("v")
        deferred.reject(RuntimeError("late"))

        assert deferred.settled
        assert await deferred == "v"
        assert deferred.key == "k"


def test_is_future_like() -> None:
    async def coroutine_function() -> None:
        return None

    coroutine = coroutine_function()
    try:
        assert is_future_like(coroutine)
    finally:
        coroutine.close()
    assert is_future_like(concurrent.futures.Future())
    assert not is_future_like("value")
    assert not is_future_like(None)
