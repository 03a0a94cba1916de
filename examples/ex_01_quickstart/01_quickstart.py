"""Quickstart: define keyed factories and resolve several keys at once.

This module demonstrates:

1. Direct, awaitable, callback, and deferred factories.
2. ``depends`` as an alias string, a list, a mapping, and a callable.
3. Batch definitions with ``define({...})``.
4. One ``aresolve([...])`` call building the whole graph, sharing ``characters``.
"""

from __future__ import annotations

import asyncio

from keywire import Container


def collect_characters(memo: list[str], key: str, _index: int) -> list[str]:
    prefix = "character/"
    if not key.startswith(prefix):
        return memo
    return [*memo, f"{key} as {key[len(prefix) :]}"]


async def main() -> None:
    container = Container(timeout=5000)
    define = container.define

    async def bar() -> str:
        return "BAR"

    define("foo", lambda: "FOO")
    define("bar", bar)
    define("baz", lambda done: done(None, "BAZ"))
    define("qux", lambda deferred: deferred.resolve("QUX"))

    define(
        {
            "character/solo": lambda: "Han Solo",
            "character/leia": lambda: "Princess Leia",
            "character/vader": lambda: "Darth Vader",
            "character/palpatine": lambda: "Emperor Palpatine",
        },
    )

    define("foofoo", "foo as val", lambda deps: deps["val"] + deps["val"])
    define("foobar", ["foo", "bar as b"], lambda deps: deps["foo"] + deps["b"])
    define("barbaz", {"bar": True, "b": "baz"}, lambda deps: deps["bar"] + deps["b"])

    define("characters", {"depends": collect_characters, "factory": lambda deps: deps})

    define(
        {
            "good": {
                "depends": "characters",
                "factory": lambda deps: {
                    "solo": deps["characters"]["solo"],
                    "leia": deps["characters"]["leia"],
                },
            },
            "evil": {
                "depends": "characters",
                "factory": lambda deps: {
                    "vader": deps["characters"]["vader"],
                    "palpatine": deps["characters"]["palpatine"],
                },
            },
        },
    )

    everything = await container.aresolve(["foofoo", "foobar", "barbaz", "good", "evil"])
    print(f"foofoo={everything['foofoo']}")  # => foofoo=FOOFOO
    print(f"foobar={everything['foobar']}")  # => foobar=FOOBAR
    print(f"barbaz={everything['barbaz']}")  # => barbaz=BARBAZ
    print(f"good={everything['good']}")  # => good={'solo': 'Han Solo', 'leia': 'Princess Leia'}
    print(
        f"evil={everything['evil']}",
    )  # => evil={'vader': 'Darth Vader', 'palpatine': 'Emperor Palpatine'}

    qux = await container.aresolve("qux")
    print(f"qux={qux}")  # => qux=QUX


if __name__ == "__main__":
    asyncio.run(main())
