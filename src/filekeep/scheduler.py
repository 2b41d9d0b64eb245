"""PurgeScheduler — runs the trash purge sweep on a fixed interval."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from .exceptions import InvalidArgumentError

if TYPE_CHECKING:
    from .trash import TrashManager
    from .types import PurgeResult

logger = logging.getLogger(__name__)


class PurgeScheduler:
    """Background loop calling ``TrashManager.run_purge_sweep``.

    A failing sweep is logged and the loop keeps going.  Runs never
    overlap within one scheduler; separate processes may overlap, which
    the sweep tolerates.
    """

    def __init__(
        self,
        trash: TrashManager,
        interval_seconds: float = 24 * 60 * 60,
        *,
        run_immediately: bool = True,
    ) -> None:
        if interval_seconds <= 0:
            raise InvalidArgumentError("interval_seconds must be > 0")
        self._trash = trash
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self.runs = 0
        self.failures = 0
        self.last_result: PurgeResult | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="filekeep-purge-sweep")
        logger.info("Purge scheduler started (every %.0fs)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        task, self._task = self._task, None
        try:
            await asyncio.wait_for(task, timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Purge scheduler stopped after %d run(s)", self.runs)

    async def run_once(self) -> PurgeResult | None:
        try:
            result = await self._trash.run_purge_sweep()
        except Exception:
            self.failures += 1
            logger.warning("Purge sweep failed; next attempt in %.0fs", self.interval_seconds, exc_info=True)
            return None
        finally:
            self.runs += 1
        self.last_result = result
        return result

    async def _loop(self) -> None:
        if self.run_immediately:
            await self.run_once()
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                await self.run_once()
