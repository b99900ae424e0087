from __future__ import annotations
import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable

import structlog

from . import config
from .client import AppointmentClient
from .errors import ClinicAPIError
from .models import AppointmentStats
from .timeutils import utcnow

logger = structlog.get_logger(__name__)


class StatsPoller:
    """Refresh appointment statistics on a fixed interval until stopped.

    Usage:
        async with StatsPoller(client, on_update=render) as poller:
            ...
    """

    def __init__(
        self,
        client: AppointmentClient,
        on_update: Callable[[AppointmentStats], Any] | None = None,
        interval: float | None = None,
        days: int = 30,
    ):
        self.client = client
        self.on_update = on_update
        self.interval = interval or config.DASHBOARD_REFRESH_SECONDS
        self.days = days
        self.latest: AppointmentStats | None = None
        self.last_error: str | None = None
        self._task: asyncio.Task | None = None

    def range(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        end = now or utcnow()
        return end - timedelta(days=self.days), end

    async def refresh(self) -> AppointmentStats | None:
        start, end = self.range()
        try:
            stats = await self.client.get_stats(start, end)
        except ClinicAPIError as exc:
            self.last_error = exc.message
            logger.warning("dashboard refresh failed", error=exc.message)
            return None
        self.latest, self.last_error = stats, None
        if self.on_update:
            try:
                self.on_update(stats)
            except Exception as exc:
                self.last_error = str(exc)
                logger.exception("dashboard update callback failed")
        return stats

    async def _loop(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.ensure_future(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> "StatsPoller":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
