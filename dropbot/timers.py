"""One-shot asyncio timers that re-arm themselves instead of ticking."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .models import now_ms

log = logging.getLogger(__name__)


class DeferredTimer:
    """A single cancellable deferred callback.

    ``arm`` always replaces the pending callback, so an instance never holds
    more than one live timer. The handle is dropped before the callback runs;
    the callback may therefore re-arm the same timer.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[None]],
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.name = name
        self._callback = callback
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self.fires_at: int | None = None
        self.delay_ms: int | None = None

    def is_armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self, delay_ms: int) -> None:
        self.cancel()
        delay_ms = max(int(delay_ms), 0)
        self.delay_ms = delay_ms
        self.fires_at = self._clock() + delay_ms
        self._task = asyncio.get_running_loop().create_task(
            self._run(delay_ms), name=f"timer:{self.name}"
        )
        log.debug("Timer %s armed for %s ms", self.name, delay_ms)

    def cancel(self) -> None:
        task = self._task
        self._task = None
        self.fires_at = None
        self.delay_ms = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()

    async def _run(self, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)
        self._task = None
        self.fires_at = None
        self.delay_ms = None
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:  # pylint: disable=broad-except
            log.exception("Timer %s callback failed", self.name)


__all__ = ["DeferredTimer"]
