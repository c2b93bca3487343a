"""
Database Utilities

Provides retry logic and connection setup for SQLite access from the
collector's worker threads.
"""

import functools
import logging
import sqlite3
import time
from typing import Any, Callable

log = logging.getLogger("PodMonitor.DbUtils")


def retry_on_db_lock(max_attempts: int = 3, base_delay: float = 0.5, max_delay: float = 5.0):
    """
    Decorator to retry database operations on lock/busy errors with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            last_exception = None
            delay = base_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    last_exception = e
                    error_msg = str(e).lower()

                    # Only retry on lock/busy errors
                    if "locked" not in error_msg and "busy" not in error_msg:
                        raise
                    if attempt < max_attempts:
                        log.warning(
                            f"Database operation failed (attempt {attempt}/{max_attempts}): {e}. "
                            f"Retrying in {delay:.2f}s..."
                        )
                        time.sleep(delay)
                        delay = min(delay * 2, max_delay)
                    else:
                        log.error(f"Database operation failed after {max_attempts} attempts: {e}")

            raise last_exception

        return wrapper

    return decorator


def get_optimized_connection(db_path: str, timeout: float = 30.0) -> sqlite3.Connection:
    """
    Create a SQLite connection tuned for one writer and concurrent readers.

    Args:
        db_path: Path to database file
        timeout: Connection timeout in seconds

    Returns:
        Configured SQLite connection
    """
    conn = sqlite3.connect(db_path, timeout=timeout, detect_types=0)
    cursor = conn.cursor()

    # WAL mode lets dashboard reads proceed while the collector writes
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.execute("PRAGMA temp_store=MEMORY;")
    cursor.execute(f"PRAGMA busy_timeout={int(timeout * 1000)};")

    log.debug(f"Created SQLite connection to {db_path} (timeout={timeout}s)")
    return conn
