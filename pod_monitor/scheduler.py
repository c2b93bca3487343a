import asyncio
import datetime
import logging
from typing import Any, Dict, List, Optional

from .config import COLLECTOR_INITIAL_DELAY_SECONDS, COLLECTOR_INTERVAL_SECONDS

log = logging.getLogger("PodMonitor.Scheduler")

IDLE = 'idle'
RUNNING_CYCLE = 'running-cycle'


class CollectionScheduler:
    """
    Fires collection cycles once shortly after start and then at a fixed
    interval. At most one cycle is in flight; a fire that arrives while a
    cycle is running is dropped, not queued.
    """

    def __init__(self, collector, interval_seconds: float = COLLECTOR_INTERVAL_SECONDS,
                 initial_delay_seconds: float = COLLECTOR_INITIAL_DELAY_SECONDS):
        self.collector = collector
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.state = IDLE
        self.skipped_cycles = 0
        self.completed_cycles = 0
        self.last_cycle_started: Optional[datetime.datetime] = None
        self._timers: List[asyncio.Task] = []
        self._cycle_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.state == RUNNING_CYCLE

    def _claim(self) -> bool:
        if self.state == RUNNING_CYCLE:
            self.skipped_cycles += 1
            log.warning(f"[COLLECTOR] Previous cycle still running, skipping this one ({self.skipped_cycles} skipped so far)")
            return False
        self.state = RUNNING_CYCLE
        self.last_cycle_started = datetime.datetime.now(datetime.timezone.utc)
        return True

    async def _execute(self):
        try:
            results = await self.collector.collect_all_networks()
            self.completed_cycles += 1
            return results
        except Exception:
            log.error("Collection cycle failed:", exc_info=True)
            return None
        finally:
            self.state = IDLE

    async def run_cycle(self) -> Optional[Dict[str, Any]]:
        """Run one cycle now and wait for it. Returns None if one is already running."""
        if not self._claim():
            return None
        return await self._execute()

    def fire(self) -> bool:
        """Start a cycle in the background unless one is in flight."""
        if not self._claim():
            return False
        self._cycle_task = asyncio.create_task(self._execute())
        return True

    async def _initial_run(self):
        await asyncio.sleep(self.initial_delay_seconds)
        self.fire()

    async def _periodic_loop(self):
        log.info(f"[COLLECTOR] Scheduled to run every {self.interval_seconds}s")
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.fire()

    def start(self):
        if self._timers:
            return
        log.info(f"[COLLECTOR] Initial collection in {self.initial_delay_seconds}s")
        self._timers = [
            asyncio.create_task(self._initial_run()),
            asyncio.create_task(self._periodic_loop()),
        ]

    async def stop(self):
        tasks = list(self._timers)
        if self._cycle_task is not None and not self._cycle_task.done():
            tasks.append(self._cycle_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timers = []
        self._cycle_task = None
        self.state = IDLE
        log.info("[COLLECTOR] Scheduler stopped.")

    def status(self) -> Dict[str, Any]:
        last = self.collector.last_cycle
        return {
            'state': self.state,
            'interval_seconds': self.interval_seconds,
            'completed_cycles': self.completed_cycles,
            'skipped_cycles': self.skipped_cycles,
            'last_cycle_started': self.last_cycle_started.isoformat() if self.last_cycle_started else None,
            'last_cycle_duration_seconds': last['duration_seconds'] if last else None,
        }
