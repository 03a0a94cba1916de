"""Dynamic ``depends`` computed from the keys defined at resolution time.

This module demonstrates:

1. A ``depends`` callable folding over every defined key.
2. Keys defined later being picked up by the next resolution.
"""

from __future__ import annotations

import asyncio

from keywire import Container, Lifetime


def plugins(memo: list[str], key: str, _index: int) -> list[str]:
    if key.startswith("plugin/"):
        memo.append(f"{key} as {key.removeprefix('plugin/')}")
    return memo


async def main() -> None:
    container = Container(lifetime=Lifetime.RESOLUTION)
    container.define("plugin/auth", lambda: "auth-v1")
    container.define("plugin/cache", lambda: "cache-v2")
    container.define("registry", plugins, lambda deps: sorted(deps))

    print(f"registry={await container.aresolve('registry')}")  # => registry=['auth', 'cache']

    container.define("plugin/metrics", lambda: "metrics-v1")
    print(
        f"registry={await container.aresolve('registry')}",
    )  # => registry=['auth', 'cache', 'metrics']


if __name__ == "__main__":
    asyncio.run(main())
