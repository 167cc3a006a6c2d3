# Background eviction of expired grants and tokens.
# Created: 2026-10-18
#
# Lookups already re-check expiry, so the sweeper only reclaims memory.
# Each pass works on list snapshots; foreground requests keep running.

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from porter_oauth.api.oauth2.models import utcnow
from porter_oauth.api.oauth2.server import Clock
from porter_oauth.api.oauth2.storage import TokenStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 3600.0


@dataclass
class SweepResult:
    grants: int = 0
    access_tokens: int = 0
    refresh_tokens: int = 0

    @property
    def total(self) -> int:
        return self.grants + self.access_tokens + self.refresh_tokens


class CleanupSweeper:
    """Periodic task that deletes expired records from a TokenStore."""

    def __init__(
        self,
        storage: TokenStore,
        interval: float = DEFAULT_INTERVAL,
        clock: Clock = utcnow,
    ):
        self.storage = storage
        self.interval = interval
        self._clock = clock
        self._hooks: list[Callable[[], Any]] = []
        self._task: asyncio.Task | None = None

    def add_hook(self, hook: Callable[[], Any]) -> None:
        """Run *hook* at the end of every pass, e.g. a rate limiter's ``cleanup``."""
        self._hooks.append(hook)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep_once(self) -> SweepResult:
        """Run one eviction pass and return how many records were removed."""
        now = self._clock()
        result = SweepResult()

        with self.storage.batch():
            for grant in self.storage.list_grants():
                if (grant.consumed or grant.is_expired(now)) and self.storage.delete_grant(
                    grant.code
                ):
                    result.grants += 1

            for access in self.storage.list_access_tokens():
                if access.is_expired(now) and self.storage.delete_access_token(access.token):
                    result.access_tokens += 1

            for refresh in self.storage.list_refresh_tokens():
                if refresh.is_expired(now) and self.storage.delete_refresh_token(refresh.token):
                    result.refresh_tokens += 1

        for hook in self._hooks:
            hook()

        if result.total:
            logger.info(
                "Cleaned up %d grants, %d access tokens, %d refresh tokens",
                result.grants,
                result.access_tokens,
                result.refresh_tokens,
            )
        return result

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Cleanup sweeper started (every %.0fs)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Cleanup sweeper stopped")

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep_once()
            except Exception:
                logger.error("Cleanup sweep failed", exc_info=True)
