"""Background runner for the subscription expiry sweep."""

import asyncio
import time
from typing import Callable, Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from shared.core import get_logger
from .subscription_service import SubscriptionScheduler

logger = get_logger(__name__)


class ExpirySweepRunner:
    """Runs ``SubscriptionScheduler.sweep_expired`` every ``interval`` seconds.

    Each pass opens its own session, so a pass is one unit of work exactly
    like an HTTP request. A failed pass is logged and the loop carries on.
    """

    def __init__(self, session_factory: Callable[[], Session], interval: float):
        self.session_factory = session_factory
        self.interval = interval
        self.last_run_at: Optional[float] = None
        self.last_count: Optional[int] = None
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    def run_once(self) -> int:
        db = self.session_factory()
        try:
            count = SubscriptionScheduler(db).sweep_expired()
        except SQLAlchemyError as e:
            self.last_error = str(e)
            logger.error(f"Expiry sweep failed: {e}", exc_info=True)
            raise
        finally:
            db.close()
        self.last_run_at = time.time()
        self.last_count = count
        self.last_error = None
        return count

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await asyncio.to_thread(self.run_once)
            except SQLAlchemyError:
                # Already logged; try again on the next tick
                continue
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"Expiry sweep pass raised: {e}", exc_info=True)

    def start(self) -> None:
        if not self.enabled or self._task is not None:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Expiry sweep scheduled every {self.interval}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def health(self) -> dict:
        """Snapshot used by the readiness probe."""
        return {
            "enabled": self.enabled,
            "interval_seconds": self.interval,
            "last_run_at": self.last_run_at,
            "last_count": self.last_count,
            "last_error": self.last_error,
        }
