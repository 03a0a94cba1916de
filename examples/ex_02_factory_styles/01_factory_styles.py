"""Factory completion styles.

This module demonstrates:

1. The style keywire detects for each factory signature.
2. A callback settled from a worker thread.
3. A ``Deferred`` annotated parameter with a custom name.
4. Resolving from synchronous code with ``resolve_sync``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from keywire import Container, Deferred


def direct(deps: dict[str, Any]) -> str:
    return deps["word"].upper()


async def awaitable(deps: dict[str, Any]) -> str:
    return deps["word"].upper()


def callback(deps: dict[str, Any], done: Callable[..., None]) -> None:
    threading.Thread(target=done, args=(None, deps["word"].upper())).start()


def deferred(deps: dict[str, Any], controller: Deferred) -> None:
    controller.resolve(deps["word"].upper())


def main() -> None:
    container = Container(timeout=1000)
    container.define_value("word", "hello")
    for key, factory in {
        "direct": direct,
        "awaitable": awaitable,
        "callback": callback,
        "deferred": deferred,
    }.items():
        container.define(key, "word", factory)

    keys = ("direct", "awaitable", "callback", "deferred")
    styles = {key: container.plan(key).nodes[key].definition.style.name for key in keys}
    print(
        f"styles={styles}",
    )  # => styles={'direct': 'DIRECT', 'awaitable': 'ASYNC', 'callback': 'CALLBACK', 'deferred': 'DEFERRED'}

    values = container.resolve_sync(list(keys))
    print(f"all_equal={len(set(values.values())) == 1}")  # => all_equal=True
    print(f"value={values['callback']}")  # => value=HELLO
    container.close()


if __name__ == "__main__":
    main()
