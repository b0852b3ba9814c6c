from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from ..core.utils import utcnow
from ..domain.ports.persistence import DocumentRepository

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Background task removing users whose email verification window closed unverified."""

    def __init__(
        self,
        users: DocumentRepository,
        *,
        interval_seconds: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._users = users
        self._interval = interval_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task[None]] = None
        self._shutdown = asyncio.Event()

    async def start(self) -> None:
        if self._task:
            return
        logger.info("Starting expiry sweeper every %s seconds.", self._interval)
        self._shutdown.clear()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="expiry-sweeper")

    async def stop(self) -> None:
        if not self._task:
            return
        logger.info("Stopping expiry sweeper.")
        self._shutdown.set()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    def sweep_once(self) -> int:
        purged = self._users.delete_where(
            [
                ("email_verified", "eq", False),
                ("email_verification_code_expires", "lte", self._clock()),
            ]
        )
        if purged:
            logger.info("Removed %s unverified users past their verification window.", purged)
        return purged

    async def _run(self) -> None:
        while not self._shutdown.is_set():
            try:
                self.sweep_once()
            except Exception:  # pragma: no cover
                logger.exception("Unexpected error while sweeping expired users.")
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
