from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from keywire.exceptions import KeywireInvalidDefinitionError, KeywireTimeoutError

T = TypeVar("T")

logger = logging.getLogger(__name__)

_MILLISECONDS_PER_SECOND = 1000


def validate_timeout(timeout: object, *, option_name: str = "timeout") -> float | None:
    """Validate a timeout option given in milliseconds; ``None`` disables it."""
    if timeout is None:
        return None
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        msg = f"Option {option_name!r} must be a number of milliseconds or None, got {timeout!r}."
        raise KeywireInvalidDefinitionError(msg)
    if timeout < 0:
        msg = f"Option {option_name!r} must not be negative, got {timeout!r}."
        raise KeywireInvalidDefinitionError(msg)
    return float(timeout)


@dataclass(frozen=True, slots=True)
class TimeoutGuard:
    """Races a resolution against a deadline.

    On expiry only the waiting is cancelled: factory tasks started by the
    resolution keep running and still populate the cache.
    """

    timeout: float | None
    """Deadline in milliseconds, or ``None`` to wait forever."""

    async def run(self, awaitable: Awaitable[T], *, keys: Sequence[str]) -> T:
        """Await ``awaitable`` within the deadline.

        Raises:
            KeywireTimeoutError: If the deadline passed first.

        """
        if self.timeout is None:
            return await awaitable

        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout / _MILLISECONDS_PER_SECOND)
        except asyncio.TimeoutError as error:
            logger.warning("Resolution of %r timed out after %g ms", list(keys), self.timeout)
            raise KeywireTimeoutError(keys, self.timeout) from error
