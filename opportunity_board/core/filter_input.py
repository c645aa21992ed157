"""
Debounced filter input.

Keystrokes update ``raw`` immediately; ``value`` only follows once the
input has been quiet for the debounce interval. Committed values are
sanitized like the client filter and handed to an optional callback.
"""

import asyncio
from typing import Callable, Optional

import structlog

from opportunity_board.core.config import settings
from opportunity_board.core.schemas import sanitize_client_text

logger = structlog.get_logger()


class DebouncedFilterInput:
    """Text input whose committed value trails the raw value by a quiet period."""

    def __init__(
        self,
        initial: str = "",
        delay: Optional[float] = None,
        on_commit: Optional[Callable[[str], None]] = None,
    ):
        self.delay = settings.FILTER_DEBOUNCE_SECONDS if delay is None else delay
        self.on_commit = on_commit
        self.raw = initial
        self.value = sanitize_client_text(initial)
        self._timer: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def set(self, raw: str) -> None:
        """Record new input and restart the debounce timer."""
        self.raw = raw
        self._cancel_timer()
        self._timer = asyncio.create_task(self._commit_later())

    async def _commit_later(self) -> None:
        await asyncio.sleep(self.delay)
        self._commit()

    def flush(self) -> str:
        """Commit the current raw input now, skipping the remaining delay."""
        self._cancel_timer()
        self._commit()
        return self.value

    def _commit(self) -> None:
        value = sanitize_client_text(self.raw)
        if value == self.value:
            return
        self.value = value
        logger.debug("filter_input_committed", value=value)
        if self.on_commit is not None:
            self.on_commit(value)

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def aclose(self) -> None:
        timer = self._timer
        self._cancel_timer()
        if timer is not None:
            try:
                await timer
            except asyncio.CancelledError:
                pass
