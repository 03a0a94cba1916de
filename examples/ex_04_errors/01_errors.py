"""Errors and troubleshooting.

This module demonstrates:

1. ``KeywireUnknownKeyError`` for a missing dependency, raised before any factory runs.
2. ``KeywireCycleError`` carrying the cyclic path.
3. ``KeywireFactoryError`` wrapping a factory failure, while siblings still settle.
4. ``KeywireTimeoutError`` for a slow factory, whose value still lands in the cache.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from keywire import (
    Container,
    KeywireCycleError,
    KeywireFactoryError,
    KeywireTimeoutError,
    KeywireUnknownKeyError,
)


def fail() -> str:
    msg = "database is down"
    raise ConnectionError(msg)


async def main() -> None:
    # timeouts are also reported as keywire warnings
    logging.getLogger("keywire").setLevel(logging.ERROR)

    container = Container(timeout=50)
    calls: list[str] = []

    container.define("service", "config", lambda deps: calls.append("service"))
    try:
        await container.aresolve("service")
    except KeywireUnknownKeyError as error:
        print(
            f"unknown={error.key} required_by={error.required_by}",
        )  # => unknown=config required_by=service
    print(f"factories_called={calls}")  # => factories_called=[]

    container.define("a", "b", lambda deps: deps)
    container.define("b", "a", lambda deps: deps)
    try:
        await container.aresolve("a")
    except KeywireCycleError as error:
        print(f"cycle={' -> '.join(error.path)}")  # => cycle=a -> b -> a

    container.define("db", fail)
    container.define("repo", "db", lambda deps: deps["db"])
    container.define("clock", lambda: "tick")
    try:
        await container.aresolve(["repo", "clock"])
    except KeywireFactoryError as error:
        print(
            f"failed_key={error.key} cause={type(error.__cause__).__name__}",
        )  # => failed_key=db cause=ConnectionError
    print(f"clock_resolved={container.is_resolved('clock')}")  # => clock_resolved=True

    pending: list[Callable[..., None]] = []
    container.define("slow", lambda done: pending.append(done))
    try:
        await container.aresolve("slow")
    except KeywireTimeoutError as error:
        print(f"timeout_ms={error.timeout:g}")  # => timeout_ms=50

    pending[0](None, "late")
    print(f"slow={await container.aresolve('slow')}")  # => slow=late


if __name__ == "__main__":
    asyncio.run(main())
