"""Window store interfaces.

The rate limiter depends on this abstraction (not on Redis or the in-process
map) so the durable and fallback paths are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowResult:
    """Outcome of a single acquire attempt against a window.

    Attributes:
        allowed: Whether the attempt fit inside the window budget.
        limit: Max attempts per window.
        remaining: Attempts left in the current window (0 when blocked).
        reset_at_ms: UNIX epoch milliseconds when budget frees up.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int


class AbstractWindowStore(ABC):
    """Interface for counter stores keyed by rate-limit key."""

    @abstractmethod
    async def try_acquire(self, key: str, limit: int, window_ms: int) -> WindowResult:
        """Consume one unit of budget for ``key`` if the window allows it.

        Args:
            key: Fully qualified limiter key (``prefix:identity``).
            limit: Max attempts per window.
            window_ms: Window length in milliseconds.

        Returns:
            WindowResult describing the decision and window metadata.
        """
        raise NotImplementedError
