from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

from keywire.exceptions import KeywireAsyncContextError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BackgroundLoop:
    """An event loop running forever in a daemon thread, started on first use.

    Resolutions submitted from synchronous code run here. Factory tasks keep
    running after the caller that started them times out.
    """

    def __init__(self, name: str = "keywire") -> None:
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._loop is not None

    def submit(self, coroutine: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        """Schedule ``coroutine`` on the background loop and return its future."""
        return asyncio.run_coroutine_threadsafe(coroutine, self._ensure_started())

    def close(self) -> None:
        """Cancel pending tasks, stop the loop and join its thread.

        Raises:
            KeywireAsyncContextError: If called from the background loop itself.

        """
        with self._lock:
            loop, thread = self._loop, self._thread
            if loop is None or thread is None:
                return
            if threading.current_thread() is thread:
                msg = "The background loop cannot be closed from one of its own tasks."
                raise KeywireAsyncContextError(msg)
            self._loop = self._thread = None

        asyncio.run_coroutine_threadsafe(_cancel_pending(), loop).result()
        loop.call_soon_threadsafe(loop.stop)
        thread.join()
        loop.close()
        logger.debug("Stopped background loop %r", self._name)

    def _ensure_started(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(
                    target=_run_forever,
                    args=(loop,),
                    name=self._name,
                    daemon=True,
                )
                thread.start()
                self._loop, self._thread = loop, thread
                logger.debug("Started background loop %r", self._name)
            return self._loop


def _run_forever(loop: asyncio.AbstractEventLoop) -> None:
    asyncio.set_event_loop(loop)
    loop.run_forever()


async def _cancel_pending() -> None:
    current = asyncio.current_task()
    pending = [task for task in asyncio.all_tasks() if task is not current]
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    await asyncio.get_running_loop().shutdown_asyncgens()
