"""Memoization lifetimes and single-flight resolution.

This module demonstrates:

1. ``Lifetime.SINGLETON``: concurrent and repeated resolutions share one call.
2. ``Lifetime.RESOLUTION``: each ``aresolve`` call builds values again.
3. Redefining a key drops its memoized value.
"""

from __future__ import annotations

import asyncio
from typing import Any

from keywire import Container, Lifetime


async def main() -> None:
    calls = {"count": 0}

    async def connect() -> dict[str, Any]:
        calls["count"] += 1
        await asyncio.sleep(0.01)
        return {"connection": calls["count"]}

    singleton = Container()
    singleton.define("db", connect)
    first, second = await asyncio.gather(singleton.aresolve("db"), singleton.aresolve("db"))
    await singleton.aresolve("db")
    print(f"singleton_calls={calls['count']} same={first is second}")  # => singleton_calls=1 same=True

    calls["count"] = 0
    per_resolution = Container(lifetime=Lifetime.RESOLUTION)
    per_resolution.define("db", connect)
    per_resolution.define("users", "db", lambda deps: deps["db"])
    per_resolution.define("orders", "db", lambda deps: deps["db"])
    shared = await per_resolution.aresolve(["users", "orders"])
    await per_resolution.aresolve("db")
    print(
        f"resolution_calls={calls['count']} shared={shared['users'] is shared['orders']}",
    )  # => resolution_calls=2 shared=True

    singleton.define("db", lambda: {"connection": "replaced"})
    print(f"redefined={await singleton.aresolve('db')}")  # => redefined={'connection': 'replaced'}


if __name__ == "__main__":
    asyncio.run(main())
