from __future__ import annotations

import asyncio
import logging
from typing import Callable

from codepair.core.logger import log_event
from codepair.errors import NotFoundError, StaleStatusError
from codepair.models import SessionStatus, now_ms
from codepair.session.state_store import SessionStateStore
from codepair.system_metrics import increment_metric

logger = logging.getLogger("codepair.sweeper")


class MissedSessionSweeper:
    """Moves scheduled sessions whose start time has passed to ``missed``.

    Selection is by status and each patch only applies while the session
    is still scheduled, so a session another writer already moved is
    never overwritten.
    """

    def __init__(self, store: SessionStateStore, clock_ms: Callable[[], int] = now_ms):
        self.store = store
        self.clock_ms = clock_ms

    async def sweep(self, now: int | None = None) -> int:
        sweep_ts = int(now if now is not None else self.clock_ms())
        overdue = [
            session
            for session in await self.store.list_by_status(SessionStatus.SCHEDULED)
            if session.start_time < sweep_ts
        ]

        marked = 0
        for session in overdue:
            try:
                await self.store.patch(
                    session.id,
                    {"status": SessionStatus.MISSED.value, "end_time": sweep_ts},
                    expected_status=SessionStatus.SCHEDULED,
                )
            except (NotFoundError, StaleStatusError):
                continue
            marked += 1
            log_event("sweeper", "session_missed", session.id, start_time=session.start_time, end_time=sweep_ts)

        increment_metric("sweeps_total")
        if marked:
            increment_metric("sessions_marked_missed_total", marked)
            logger.info("marked missed sessions=%s", marked)
        return marked

    async def run_forever(self, interval_sec: float) -> None:
        while True:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("missed session sweep failed: %s", exc)
            await asyncio.sleep(interval_sec)
