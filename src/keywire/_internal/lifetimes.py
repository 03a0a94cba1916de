from __future__ import annotations

from enum import Enum, auto


class Lifetime(Enum):
    """Defines how long resolved values are memoized by the container."""

    SINGLETON = auto()
    """A value is built once and shared for the lifetime of the container."""

    RESOLUTION = auto()
    """A value is shared within one ``aresolve`` call and rebuilt by the next one."""
