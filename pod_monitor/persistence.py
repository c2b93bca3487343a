"""
Async persistence facade over the blocking SQLite functions.

Blocking calls run on a thread pool. Writes are serialized with a lock.
If the database cannot be initialised at startup the facade stays in a
disabled state: writes return None and reads return empty results, so the
collector and the dashboard keep working without history.
"""

import asyncio
import concurrent.futures
import datetime
import logging
from typing import Any, Dict, List, Optional

from . import database
from .config import DB_RETENTION_DAYS, DB_THREAD_POOL_SIZE, DEFAULT_HISTORY_INTERVAL, DEFAULT_HISTORY_PERIOD
from .history import bucket_snapshots, interval_to_seconds, window_start
from .models import NetworkSnapshot, NodeHistoryRecord, RegistryResult

log = logging.getLogger("PodMonitor.Persistence")


class Persistence:
    def __init__(self, db_path: str, retention_days: int = DB_RETENTION_DAYS,
                 executor: Optional[concurrent.futures.Executor] = None):
        self.db_path = db_path
        self.retention_days = retention_days
        self.available = False
        self._owns_executor = executor is None
        self._executor = executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=DB_THREAD_POOL_SIZE, thread_name_prefix='pod-monitor-db'
        )
        self._write_lock = asyncio.Lock()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    async def connect(self) -> bool:
        try:
            await self._run(database.init_db, self.db_path)
            self.available = True
            log.info("Database connected successfully")
        except Exception as e:
            self.available = False
            log.error(
                f"Database unavailable ({e}). History features disabled, "
                f"collection continues with in-memory data only."
            )
        return self.available

    async def close(self):
        self.available = False
        if self._owns_executor:
            self._executor.shutdown(wait=True)
            log.info("Database executor shut down.")

    # --- Writes ---

    async def save_network_snapshot(self, snapshot: NetworkSnapshot) -> Optional[int]:
        if not self.available:
            return None
        async with self._write_lock:
            return await self._run(database.blocking_write_network_snapshot, self.db_path, snapshot)

    async def save_node_history(self, records: List[NodeHistoryRecord]) -> Optional[int]:
        if not self.available or not records:
            return None
        async with self._write_lock:
            return await self._run(database.blocking_write_node_history, self.db_path, records)

    async def save_pods_snapshot(self, network: str, registry: RegistryResult,
                                 timestamp: datetime.datetime) -> Optional[int]:
        if not self.available:
            return None
        async with self._write_lock:
            return await self._run(
                database.blocking_write_pods_snapshot, self.db_path, network, registry, timestamp
            )

    async def prune(self) -> Dict[str, int]:
        if not self.available:
            return {}
        async with self._write_lock:
            try:
                return await self._run(database.blocking_db_prune, self.db_path, self.retention_days)
            except Exception:
                log.error("Error while pruning old history:", exc_info=True)
                return {}

    # --- Reads ---

    async def get_network_history(self, network: str, period: str = DEFAULT_HISTORY_PERIOD,
                                  interval: str = DEFAULT_HISTORY_INTERVAL) -> List[Dict[str, Any]]:
        """Bucketed averages of one network's snapshots over ``period``."""
        if not self.available:
            return []
        try:
            rows = await self._run(
                database.blocking_get_network_snapshots, self.db_path, network, window_start(period)
            )
        except Exception:
            log.error(f"[{network}] Failed to get network history:", exc_info=True)
            return []
        return bucket_snapshots(rows, interval_to_seconds(interval))

    async def get_node_history(self, address: str, period: str = DEFAULT_HISTORY_PERIOD) -> List[Dict[str, Any]]:
        """Raw, unbucketed rows of one node over ``period``."""
        if not self.available:
            return []
        try:
            return await self._run(
                database.blocking_get_node_history, self.db_path, address, window_start(period)
            )
        except Exception:
            log.error(f"Failed to get node history for {address}:", exc_info=True)
            return []

    async def get_latest_snapshots(self) -> List[Dict[str, Any]]:
        if not self.available:
            return []
        try:
            return await self._run(database.blocking_get_latest_snapshots, self.db_path)
        except Exception:
            log.error("Failed to get latest snapshots:", exc_info=True)
            return []

    async def get_aggregated_stats(self, period: str = DEFAULT_HISTORY_PERIOD) -> Optional[Dict[str, Any]]:
        if not self.available:
            return None
        try:
            return await self._run(
                database.blocking_get_aggregated_stats, self.db_path, window_start(period)
            )
        except Exception:
            log.error("Failed to get aggregated stats:", exc_info=True)
            return None
