"""Tests for asynchronous resolution: single-flight, failures, timeouts and entrypoints."""

from __future__ import annotations

import asyncio
import concurrent.futures
import time
import traceback
from typing import Any

import pytest

from keywire import (
    Container,
    KeywireAsyncContextError,
    KeywireFactoryError,
    KeywireTimeoutError,
    KeywireUnknownKeyError,
    Lifetime,
)


class Counter:
    def __init__(self) -> None:
        self.calls = 0


# =============================================================================
# Single invocation
# =============================================================================


class TestSingleFlight:
    async def test_concurrent_resolutions_share_one_invocation(self, container: Container) -> None:
        counter = Counter()

        async def connect() -> object:
            counter.calls += 1
            await asyncio.sleep(0.01)
            return object()

        container.define("db", connect)

        results = await asyncio.gather(*(container.aresolve("db") for _ in range(20)))

        assert counter.calls == 1
        assert len({id(result) for result in results}) == 1

    async def test_overlapping_requests_share_common_keys(self, container: Container) -> None:
        counter = Counter()

        async def shared() -> str:
            counter.calls += 1
            await asyncio.sleep(0.01)
            return "shared"

        container.define("shared", shared)
        container.define("a", "shared", lambda deps: deps["shared"] + "-a")
        container.define("b", "shared", lambda deps: deps["shared"] + "-b")

        first, second = await asyncio.gather(
            container.aresolve(["a", "shared"]),
            container.aresolve(["shared", "b"]),
        )

        assert counter.calls == 1
        assert first == {"a": "shared-a", "shared": "shared"}
        assert second == {"shared": "shared", "b": "shared-b"}

    async def test_repeated_resolutions_reuse_memoized_value(self, container: Container) -> None:
        counter = Counter()

        def build() -> list[int]:
            counter.calls += 1
            return [counter.calls]

        container.define("value", build)

        first = await container.aresolve("value")
        second = await container.aresolve("value")

        assert counter.calls == 1
        assert first is second

    async def test_independent_branches_run_concurrently(self, container: Container) -> None:
        async def slow(value: str) -> str:
            await asyncio.sleep(0.1)
            return value

        container.define("left", lambda: slow("L"))
        container.define("right", lambda: slow("R"))
        container.define("both", ["left", "right"], lambda deps: deps["left"] + deps["right"])

        started = time.perf_counter()
        assert await container.aresolve("both") == "LR"
        elapsed = time.perf_counter() - started

        assert elapsed < 0.19


# =============================================================================
# Lifetimes
# =============================================================================


class TestLifetimes:
    async def test_resolution_lifetime_rebuilds_per_call(
        self,
        container_per_resolution: Container,
    ) -> None:
        counter = Counter()

        def build() -> int:
            counter.calls += 1
            return counter.calls

        container_per_resolution.define("value", build)

        assert await container_per_resolution.aresolve("value") == 1
        assert await container_per_resolution.aresolve("value") == 2
        assert not container_per_resolution.is_resolved("value")

    async def test_resolution_lifetime_shares_within_one_call(
        self,
        container_per_resolution: Container,
    ) -> None:
        counter = Counter()

        def build() -> object:
            counter.calls += 1
            return object()

        container_per_resolution.define("db", build)
        container_per_resolution.define("users", "db", lambda deps: deps["db"])
        container_per_resolution.define("orders", "db", lambda deps: deps["db"])

        values = await container_per_resolution.aresolve(["users", "orders"])

        assert counter.calls == 1
        assert values["users"] is values["orders"]

    def test_lifetime_property(self, container: Container) -> None:
        assert container.lifetime is Lifetime.SINGLETON


# =============================================================================
# Failure propagation
# =============================================================================


def fail_with(error: Exception) -> Any:
    def factory() -> None:
        raise error

    return factory


class TestFailures:
    async def test_factory_error_wraps_original(self, container: Container) -> None:
        original = ValueError("boom")
        container.define("bad", fail_with(original))

        with pytest.raises(KeywireFactoryError) as exc_info:
            await container.aresolve("bad")

        assert exc_info.value.key == "bad"
        assert exc_info.value.__cause__ is original
        assert "ValueError: boom" in str(exc_info.value)

    async def test_dependents_fail_with_same_error_and_never_run(
        self,
        container: Container,
    ) -> None:
        calls: list[str] = []
        container.define("bad", fail_with(RuntimeError("down")))
        container.define("dependent", "bad", lambda deps: calls.append("dependent"))

        with pytest.raises(KeywireFactoryError) as dependent_error:
            await container.aresolve("dependent")
        with pytest.raises(KeywireFactoryError) as direct_error:
            await container.aresolve("bad")

        assert calls == []
        assert dependent_error.value is direct_error.value
        assert dependent_error.value.key == "bad"

    async def test_sibling_branches_complete_despite_failure(self, container: Container) -> None:
        async def sibling() -> str:
            await asyncio.sleep(0.02)
            return "ok"

        container.define("bad", fail_with(RuntimeError("down")))
        container.define("dependent", "bad", lambda deps: deps)
        container.define("sibling", sibling)

        with pytest.raises(KeywireFactoryError):
            await container.aresolve(["dependent", "sibling"])

        assert container.is_resolved("sibling")

    async def test_first_failure_in_completion_order_wins(self, container: Container) -> None:
        async def slow_failure() -> None:
            await asyncio.sleep(0.05)
            msg = "slow"
            raise RuntimeError(msg)

        container.define("slow", slow_failure)
        container.define("fast", fail_with(RuntimeError("fast")))

        with pytest.raises(KeywireFactoryError) as exc_info:
            await container.aresolve(["slow", "fast"])

        assert exc_info.value.key == "fast"

    async def test_failed_factories_are_not_retried(self, container: Container) -> None:
        counter = Counter()

        def flaky() -> None:
            counter.calls += 1
            msg = "nope"
            raise RuntimeError(msg)

        container.define("flaky", flaky)

        for _ in range(2):
            with pytest.raises(KeywireFactoryError):
                await container.aresolve("flaky")

        assert counter.calls == 1

    async def test_cached_failure_traceback_does_not_grow(self, container: Container) -> None:
        container.define("bad", lambda: 1 / 0)

        depths = []
        for _ in range(5):
            with pytest.raises(KeywireFactoryError) as exc_info:
                await container.aresolve("bad")
            depths.append(len(traceback.extract_tb(exc_info.value.__traceback__)))

        assert len(set(depths)) == 1

    async def test_callback_error_is_reported(self, container: Container) -> None:
        container.define("cb", lambda done: done(OSError("disk"), None))

        with pytest.raises(KeywireFactoryError) as exc_info:
            await container.aresolve("cb")

        assert isinstance(exc_info.value.__cause__, OSError)

    async def test_deferred_rejection_with_non_exception(self, container: Container) -> None:
        container.define("rejected", lambda deferred: deferred.reject("bad input"))

        with pytest.raises(KeywireFactoryError, match="rejected with 'bad input'") as exc_info:
            await container.aresolve("rejected")

        assert exc_info.value.key == "rejected"

    async def test_failed_awaitable(self, container: Container) -> None:
        async def broken() -> None:
            await asyncio.sleep(0)
            msg = "async boom"
            raise LookupError(msg)

        container.define("broken", broken)

        with pytest.raises(KeywireFactoryError) as exc_info:
            await container.aresolve("broken")

        assert isinstance(exc_info.value.__cause__, LookupError)


# =============================================================================
# Timeouts
# =============================================================================


class TestTimeouts:
    async def test_never_settling_factory_times_out(self) -> None:
        container = Container(timeout=50)
        container.define("never", lambda done: None)
        container.define("fast", lambda: "fast")

        started = time.perf_counter()
        with pytest.raises(KeywireTimeoutError) as exc_info:
            await container.aresolve(["never", "fast"])
        elapsed = time.perf_counter() - started

        assert 0.04 <= elapsed < 1.0
        assert exc_info.value.keys == ("never", "fast")
        assert exc_info.value.timeout == 50
        assert isinstance(exc_info.value, TimeoutError)
        assert container.is_resolved("fast")

    async def test_in_flight_factory_keeps_running_after_timeout(self) -> None:
        counter = Counter()

        async def slow() -> str:
            counter.calls += 1
            await asyncio.sleep(0.1)
            return "done"

        container = Container(timeout=20)
        container.define("slow", slow)

        with pytest.raises(KeywireTimeoutError):
            await container.aresolve("slow")
        await asyncio.sleep(0.15)

        assert container.is_resolved("slow")
        assert await container.aresolve("slow") == "done"
        assert counter.calls == 1

    async def test_per_call_timeout_overrides_container_default(self, container: Container) -> None:
        container.define("never", lambda deferred: None)

        with pytest.raises(KeywireTimeoutError):
            await container.aresolve("never", timeout=20)

    async def test_per_call_timeout_none_disables_deadline(self) -> None:
        async def slow() -> str:
            await asyncio.sleep(0.05)
            return "slow"

        container = Container(timeout=10)
        container.define("slow", slow)

        assert await container.aresolve("slow", timeout=None) == "slow"


# =============================================================================
# Entrypoints
# =============================================================================


class TestEntrypoints:
    async def test_resolve_returns_future(self, container: Container) -> None:
        container.define("foo", lambda: "FOO")

        future = container.resolve(["foo"])

        assert isinstance(future, asyncio.Future)
        assert await future == {"foo": "FOO"}

    async def test_resolve_delivers_errors_through_future(self, container: Container) -> None:
        future = container.resolve("missing")

        with pytest.raises(KeywireUnknownKeyError):
            await future

    def test_resolve_without_running_loop_uses_background_loop(
        self,
        container: Container,
    ) -> None:
        container.define("foo", lambda: "FOO")

        future = container.resolve("foo")
        failed = container.resolve("missing")

        assert isinstance(future, concurrent.futures.Future)
        assert future.result(timeout=2) == "FOO"
        with pytest.raises(KeywireUnknownKeyError):
            failed.result(timeout=2)

    def test_resolve_sync(self, container: Container) -> None:
        container.define("foo", lambda: "FOO")
        container.define("foofoo", "foo", lambda deps: deps["foo"] * 2)

        assert container.resolve_sync("foofoo") == "FOOFOO"
        assert container.resolve_sync(["foo"]) == {"foo": "FOO"}

    async def test_resolve_sync_inside_event_loop(self, container: Container) -> None:
        container.define("foo", lambda: "FOO")

        with pytest.raises(KeywireAsyncContextError):
            container.resolve_sync("foo")

    async def test_empty_request(self, container: Container) -> None:
        assert await container.aresolve([]) == {}

    async def test_duplicate_keys_in_request(self, container: Container) -> None:
        container.define("foo", lambda: "FOO")

        assert await container.aresolve(["foo", "foo"]) == {"foo": "FOO"}
