"""
Scheduled bulk WHOOP sync with a Redis execution lock
"""

import asyncio
import logging
import uuid
from dataclasses import asdict
from datetime import datetime
from typing import Optional

from .models import SyncSummary
from .oauth import RedisFactory, default_redis_factory
from .orchestrator import WhoopSyncService

#-----------------------------------------------------------------------------

class WhoopPullTask:
    """
    Runs `sync_all` every `interval_hours` in the server process.

    Several server instances may run the task; the Redis lock (SET NX EX)
    lets only one of them do a given pass. Without Redis the pass runs
    unlocked.
    """

    LOCK_KEY = "whoop_sync_execution_lock"

    def __init__(
        self,
        service: WhoopSyncService,
        interval_hours: float = 24.0,
        lock_duration_hours: Optional[float] = None,
        initial_delay_seconds: float = 60.0,
        redis_factory: RedisFactory = default_redis_factory,
    ):
        self.service = service
        self.interval_hours = interval_hours
        self.lock_duration_hours = lock_duration_hours or max(interval_hours - 0.5, 0.5)
        self.initial_delay_seconds = initial_delay_seconds
        self.redis_factory = redis_factory

        self.instance_id = str(uuid.uuid4())[:8]
        self.last_run: Optional[datetime] = None
        self.last_summary: Optional[SyncSummary] = None

        self._task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self.interval_hours > 0

    # -----------------------------------------------------

    async def try_acquire_lock(self, force: bool = False) -> Optional[str]:
        """Returns an execution id when this instance may run, None otherwise"""
        execution_id = str(uuid.uuid4())

        client = await self.redis_factory()
        if client is None:
            logging.warning("Redis client not available, running WHOOP sync without execution lock")
            return execution_id

        try:
            if force:
                logging.warning("Force execution mode enabled for WHOOP sync, ignoring existing lock")
                await client.delete(self.LOCK_KEY)

            lock_value = f"{self.instance_id}:{datetime.now().isoformat()}:{execution_id}"
            acquired = await client.set(
                self.LOCK_KEY,
                lock_value,
                ex=int(self.lock_duration_hours * 3600),
                nx=True,
            )
            if acquired:
                logging.info(f"WHOOP sync lock acquired (instance: {self.instance_id}, execution: {execution_id}, duration: {self.lock_duration_hours}h)")
                return execution_id

            existing = await client.get(self.LOCK_KEY)
            logging.info(f"WHOOP sync lock already held: {existing}")
            return None

        except Exception as e:
            logging.error(f"Error acquiring WHOOP sync lock: {str(e)}")
            return None
        finally:
            await client.aclose()

    async def release_lock(self, execution_id: str) -> bool:
        client = await self.redis_factory()
        if client is None:
            return True

        try:
            current = await client.get(self.LOCK_KEY)
            if current is None:
                logging.warning(f"Lock {self.LOCK_KEY} does not exist or already expired")
                return True

            if execution_id in current and self.instance_id in current:
                await client.delete(self.LOCK_KEY)
                logging.info(f"Released WHOOP sync lock (execution: {execution_id})")
                return True

            logging.warning(f"WHOOP sync lock is owned by another execution: {current}")
            return False

        except Exception as e:
            logging.error(f"Error releasing WHOOP sync lock: {str(e)}")
            return False
        finally:
            await client.aclose()

    # -----------------------------------------------------

    async def run_once(self, force: bool = False) -> Optional[SyncSummary]:
        """One locked bulk pass. Returns None when another instance holds the lock."""
        execution_id = await self.try_acquire_lock(force=force)
        if execution_id is None:
            logging.info("Skipping WHOOP bulk sync, another instance is running it")
            return None

        try:
            summary = await self.service.sync_all()
            self.last_run = datetime.now()
            self.last_summary = summary
            logging.info(f"WHOOP bulk sync completed: users={summary.users}, counts={asdict(summary.counts)}")
            return summary
        finally:
            await self.release_lock(execution_id)

    async def _run_loop(self):
        await asyncio.sleep(self.initial_delay_seconds)

        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logging.error(f"WHOOP bulk sync failed: {str(e)}", exc_info=True)

            await asyncio.sleep(self.interval_hours * 3600)

    async def start(self):
        if not self.enabled:
            logging.info("WHOOP scheduled sync disabled (WHOOP_SYNC_INTERVAL_HOURS=0)")
            return

        if self._task and not self._task.done():
            return

        logging.info(f"Starting WHOOP scheduled sync every {self.interval_hours}h")
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self):
        if not self._task:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logging.info("WHOOP scheduled sync stopped")
