from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

from keywire._internal.factories import FactoryAdapter
from keywire._internal.graph import GraphNode, ResolutionGraph
from keywire.exceptions import KeywireFactoryError

logger = logging.getLogger(__name__)


class EntryState(Enum):
    """Lifecycle of a cache entry. Keys without an entry are unstarted."""

    IN_FLIGHT = auto()
    RESOLVED = auto()
    FAILED = auto()


@dataclass(slots=True)
class CacheEntry:
    """The single shared outcome of one factory invocation for ``key``.

    Backed by a ``concurrent.futures.Future`` so callers on any thread or event
    loop can wait on it.
    """

    key: str
    future: concurrent.futures.Future[Any] = field(default_factory=concurrent.futures.Future)

    @property
    def state(self) -> EntryState:
        if not self.future.done():
            return EntryState.IN_FLIGHT
        if self.future.exception() is not None:
            return EntryState.FAILED
        return EntryState.RESOLVED

    def resolve(self, value: Any) -> None:
        if not self.future.done():
            self.future.set_result(value)

    def fail(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)

    def failed_by(self, key: str) -> bool:
        """Tell whether the entry failed because the factory for ``key`` failed."""
        if self.state is not EntryState.FAILED:
            return False
        error = self.future.exception()
        return isinstance(error, KeywireFactoryError) and error.key == key

    async def wait(self) -> Any:
        """Wait for the entry to settle without letting cancellation reach it."""
        return await asyncio.shield(asyncio.wrap_future(self.future))


class InstanceCache:
    """Memo cache of resolved values with atomic check-and-insert per key."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get_or_create(self, key: str) -> tuple[CacheEntry, bool]:
        """Return the entry for ``key`` and whether this call created it.

        The caller that receives ``True`` is the sole invoker of the factory.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                return entry, False
            entry = CacheEntry(key=key)
            self._entries[key] = entry
            return entry, True

    def peek(self, key: str) -> CacheEntry | None:
        """Get the entry for ``key`` without creating one."""
        with self._lock:
            return self._entries.get(key)

    def evict(self, key: str, entry: CacheEntry | None = None) -> CacheEntry | None:
        """Drop the entry for ``key``; with ``entry`` given, only if it is still current."""
        with self._lock:
            current = self._entries.get(key)
            if current is None or (entry is not None and current is not entry):
                return None
            del self._entries[key]
            return current

    def evict_failures_from(self, key: str) -> list[str]:
        """Drop every failed entry whose failure came from the factory for ``key``.

        Returns:
            The evicted keys.

        """
        with self._lock:
            evicted = [
                entry_key for entry_key, entry in self._entries.items() if entry.failed_by(key)
            ]
            for entry_key in evicted:
                del self._entries[entry_key]
        return evicted

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class Scheduler:
    """Executes resolution graphs bottom-up against an instance cache.

    Every node whose key has no cache entry runs in its own task. A node
    starts its factory only after all of its dependencies settled; a failed
    dependency fails the node with the same exception object. Independent
    branches run concurrently and keep running when a sibling fails.
    """

    def __init__(self, adapter: FactoryAdapter | None = None) -> None:
        self._adapter = adapter or FactoryAdapter()
        self._tasks: set[asyncio.Task[None]] = set()

    async def run(self, graph: ResolutionGraph, *, cache: InstanceCache) -> dict[str, Any]:
        """Resolve every requested key of ``graph``.

        Returns:
            A mapping of requested key to value, in request order.

        Raises:
            KeywireFactoryError: The first failure, in completion order, among
                the requested keys. Raised only after every requested key
                settled.

        """
        entries: dict[str, CacheEntry] = {}
        started = 0
        for key in graph.topological_order():
            entry, created = cache.get_or_create(key)
            entries[key] = entry
            if created:
                started += 1
                self._spawn(graph.nodes[key], entry, entries, cache)

        logger.debug(
            "Resolution plan: requested=%d graph_nodes=%d started=%d reused=%d",
            len(graph.requested),
            len(graph),
            started,
            len(graph) - started,
        )

        if not graph.requested:
            return {}

        failures: list[BaseException] = []

        def record(waiter: asyncio.Future[Any]) -> None:
            if waiter.cancelled():
                return
            error = waiter.exception()
            if error is not None:
                failures.append(error)

        # record() runs before asyncio.wait() wakes up, so failures keep completion order
        waiters = [asyncio.ensure_future(entries[key].wait()) for key in graph.requested]
        for waiter in waiters:
            waiter.add_done_callback(record)

        try:
            await asyncio.wait(waiters)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        if failures:
            # cached failures are re-raised on every resolution; keep their traceback bounded
            raise failures[0].with_traceback(None)
        return {key: waiter.result() for key, waiter in zip(graph.requested, waiters)}

    def _spawn(
        self,
        node: GraphNode,
        entry: CacheEntry,
        entries: Mapping[str, CacheEntry],
        cache: InstanceCache,
    ) -> None:
        dependency_entries = {key: entries[key] for key in node.dependencies}
        task = asyncio.get_running_loop().create_task(
            self._produce(node, entry, dependency_entries, cache),
            name=f"keywire:{node.key}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _produce(
        self,
        node: GraphNode,
        entry: CacheEntry,
        dependency_entries: Mapping[str, CacheEntry],
        cache: InstanceCache,
    ) -> None:
        try:
            try:
                values = await asyncio.gather(
                    *(dependency_entries[key].wait() for key in node.dependencies),
                )
            except Exception as error:
                logger.debug("Key %r skipped: a dependency failed with %r", node.key, error)
                entry.fail(error)
                return

            by_key = dict(zip(node.dependencies, values))
            dependencies = {binding.alias: by_key[binding.source_key] for binding in node.bindings}

            try:
                value = await self._adapter.invoke(node.definition, dependencies)
            except Exception as error:
                logger.debug("Factory for key %r failed with %r", node.key, error)
                entry.fail(_as_factory_error(node.key, error))
                return

            logger.debug("Factory for key %r settled", node.key)
            entry.resolve(value)
        except asyncio.CancelledError:
            # the loop is shutting down; later resolutions must be able to retry
            cache.evict(node.key, entry)
            entry.fail(KeywireFactoryError(node.key, "cancelled before settling"))
            raise


def _as_factory_error(key: str, error: Exception) -> KeywireFactoryError:
    if isinstance(error, KeywireFactoryError) and error.key == key:
        return error
    wrapped = KeywireFactoryError(key, f"{type(error).__name__}: {error}")
    wrapped.__cause__ = error
    return wrapped
