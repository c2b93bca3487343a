import datetime
import json
import logging
import sqlite3
from contextlib import closing
from typing import Any, Dict, List, Optional

from .config import (DB_CONNECTION_TIMEOUT, DB_MAX_RETRIES, DB_RETRY_BASE_DELAY,
                     DB_RETRY_MAX_DELAY)
from .db_utils import get_optimized_connection, retry_on_db_lock
from .models import NetworkSnapshot, NodeHistoryRecord, RegistryResult

log = logging.getLogger("PodMonitor.Database")

RETENTION_TABLES = ('network_snapshots', 'node_history', 'pods_snapshots')

NODE_HISTORY_COLUMNS = (
    'address', 'pubkey', 'network', 'timestamp', 'status', 'version', 'registry_version',
    'last_seen', 'cpu', 'ram', 'ram_used', 'ram_total', 'storage', 'uptime',
    'active_streams', 'packets_received', 'packets_sent', 'peers_count',
)


def _iso(ts: datetime.datetime) -> str:
    """Fixed-width UTC ISO string, so text comparison matches time order."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return ts.astimezone(datetime.timezone.utc).isoformat(timespec='milliseconds')


def _connect(db_path: str) -> sqlite3.Connection:
    return get_optimized_connection(db_path, timeout=DB_CONNECTION_TIMEOUT)


def init_db(db_path: str):
    """Create tables and indexes. Raises if the database cannot be opened."""
    log.info(f"Connecting to database '{db_path}' and checking schema...")
    with closing(_connect(db_path)) as conn:
        cursor = conn.cursor()

        # --- Network Snapshots: one aggregated row per network per cycle ---
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS network_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                network TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                total_pods INTEGER DEFAULT 0,
                sampled_count INTEGER DEFAULT 0,
                online_nodes INTEGER DEFAULT 0,
                offline_nodes INTEGER DEFAULT 0,
                online_ratio INTEGER DEFAULT 0,
                total_storage REAL DEFAULT 0,
                avg_cpu REAL DEFAULT 0,
                avg_ram REAL DEFAULT 0,
                avg_uptime REAL DEFAULT 0,
                total_streams INTEGER DEFAULT 0,
                total_bytes_transferred INTEGER DEFAULT 0,
                version_distribution TEXT
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_snapshots_network_time '
                       'ON network_snapshots (network, timestamp DESC);')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_snapshots_time ON network_snapshots (timestamp);')

        # --- Node History: one row per online node per cycle ---
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS node_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                address TEXT NOT NULL,
                pubkey TEXT,
                network TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                status TEXT NOT NULL,
                version TEXT,
                registry_version TEXT,
                last_seen REAL,
                cpu REAL,
                ram REAL,
                ram_used INTEGER,
                ram_total INTEGER,
                storage INTEGER,
                uptime INTEGER,
                active_streams INTEGER,
                packets_received INTEGER,
                packets_sent INTEGER,
                peers_count INTEGER
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_node_history_address_time '
                       'ON node_history (address, timestamp DESC);')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_node_history_time ON node_history (timestamp);')

        # --- Pods Snapshots: point-in-time registry dumps ---
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS pods_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                network TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                total_count INTEGER DEFAULT 0,
                pods TEXT
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_pods_network_time '
                       'ON pods_snapshots (network, timestamp DESC);')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_pods_time ON pods_snapshots (timestamp);')

        conn.commit()
    log.info("Database schema is ready.")


# --- Writes ---

def blocking_write_network_snapshot(db_path: str, snapshot: NetworkSnapshot) -> Optional[int]:
    """
    Write one network snapshot.

    Returns:
        The new row id, or None on failure
    """
    try:
        with closing(_connect(db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO network_snapshots
                (network, timestamp, total_pods, sampled_count, online_nodes, offline_nodes,
                 online_ratio, total_storage, avg_cpu, avg_ram, avg_uptime, total_streams,
                 total_bytes_transferred, version_distribution)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                snapshot.network,
                _iso(snapshot.timestamp),
                snapshot.total_pods,
                snapshot.sampled_count,
                snapshot.online_nodes,
                snapshot.offline_nodes,
                snapshot.online_ratio,
                snapshot.total_storage,
                snapshot.avg_cpu,
                snapshot.avg_ram,
                snapshot.avg_uptime,
                snapshot.total_streams,
                snapshot.total_bytes_transferred,
                json.dumps(snapshot.version_distribution),
            ))
            conn.commit()
            row_id = cursor.lastrowid
        log.info(
            f"Saved snapshot for {snapshot.network}: "
            f"{snapshot.online_nodes}/{snapshot.sampled_count} online"
        )
        return row_id
    except Exception:
        log.error("Failed to write network snapshot to DB:", exc_info=True)
        return None


def blocking_write_node_history(db_path: str, records: List[NodeHistoryRecord]) -> Optional[int]:
    """
    Insert one batch of node history records.

    Returns:
        Number of rows inserted, or None on failure / empty batch
    """
    if not records:
        return None

    placeholders = ', '.join('?' for _ in NODE_HISTORY_COLUMNS)
    rows = []
    for r in records:
        row = [getattr(r, column) for column in NODE_HISTORY_COLUMNS]
        row[NODE_HISTORY_COLUMNS.index('timestamp')] = _iso(r.timestamp)
        rows.append(row)

    try:
        with closing(_connect(db_path)) as conn:
            conn.executemany(
                f"INSERT INTO node_history ({', '.join(NODE_HISTORY_COLUMNS)}) VALUES ({placeholders})",
                rows,
            )
            conn.commit()
        log.info(f"Saved {len(rows)} node history records")
        return len(rows)
    except Exception:
        log.error("Failed to write node history to DB:", exc_info=True)
        return None


def blocking_write_pods_snapshot(db_path: str, network: str, registry: RegistryResult,
                                 timestamp: datetime.datetime) -> Optional[int]:
    try:
        pods = [
            {
                'address': p.address,
                'pubkey': p.pubkey,
                'version': p.version,
                'last_seen_timestamp': p.last_seen_timestamp,
            }
            for p in registry.pods
        ]
        with closing(_connect(db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                'INSERT INTO pods_snapshots (network, timestamp, total_count, pods) VALUES (?, ?, ?, ?)',
                (network, _iso(timestamp), registry.total_count, json.dumps(pods)),
            )
            conn.commit()
            return cursor.lastrowid
    except Exception:
        log.error("Failed to write pods snapshot to DB:", exc_info=True)
        return None


# --- Reads ---

def _snapshot_row(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data.pop('id', None)
    raw_versions = data.get('version_distribution')
    data['version_distribution'] = json.loads(raw_versions) if raw_versions else {}
    return data


@retry_on_db_lock(max_attempts=DB_MAX_RETRIES, base_delay=DB_RETRY_BASE_DELAY, max_delay=DB_RETRY_MAX_DELAY)
def blocking_get_network_snapshots(db_path: str, network: str,
                                   start_time: datetime.datetime) -> List[Dict[str, Any]]:
    """All snapshots of one network since ``start_time``, oldest first."""
    with closing(_connect(db_path)) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute('''
            SELECT * FROM network_snapshots
            WHERE network = ? AND timestamp >= ?
            ORDER BY timestamp ASC
        ''', (network, _iso(start_time))).fetchall()
        return [_snapshot_row(row) for row in rows]


@retry_on_db_lock(max_attempts=DB_MAX_RETRIES, base_delay=DB_RETRY_BASE_DELAY, max_delay=DB_RETRY_MAX_DELAY)
def blocking_get_node_history(db_path: str, address: str,
                              start_time: datetime.datetime) -> List[Dict[str, Any]]:
    """Raw history rows of one node since ``start_time``, oldest first."""
    with closing(_connect(db_path)) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(f'''
            SELECT {', '.join(NODE_HISTORY_COLUMNS)} FROM node_history
            WHERE address = ? AND timestamp >= ?
            ORDER BY timestamp ASC
        ''', (address, _iso(start_time))).fetchall()
        return [dict(row) for row in rows]


@retry_on_db_lock(max_attempts=DB_MAX_RETRIES, base_delay=DB_RETRY_BASE_DELAY, max_delay=DB_RETRY_MAX_DELAY)
def blocking_get_latest_snapshots(db_path: str) -> List[Dict[str, Any]]:
    """The most recent snapshot of every network."""
    with closing(_connect(db_path)) as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute('''
            SELECT s1.*
            FROM network_snapshots s1
            INNER JOIN (
                SELECT network, MAX(timestamp) AS max_timestamp
                FROM network_snapshots
                GROUP BY network
            ) s2 ON s1.network = s2.network AND s1.timestamp = s2.max_timestamp
            GROUP BY s1.network
            ORDER BY s1.network
        ''').fetchall()
        return [_snapshot_row(row) for row in rows]


@retry_on_db_lock(max_attempts=DB_MAX_RETRIES, base_delay=DB_RETRY_BASE_DELAY, max_delay=DB_RETRY_MAX_DELAY)
def blocking_get_aggregated_stats(db_path: str, start_time: datetime.datetime) -> Optional[Dict[str, Any]]:
    """Summary across all networks since ``start_time``; None when there is no data."""
    with closing(_connect(db_path)) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute('''
            SELECT AVG(total_pods) AS avg_total_pods,
                   AVG(online_nodes) AS avg_online_nodes,
                   MAX(online_nodes) AS max_online_nodes,
                   MIN(online_nodes) AS min_online_nodes,
                   AVG(avg_cpu) AS avg_cpu,
                   AVG(avg_ram) AS avg_ram,
                   COUNT(*) AS total_snapshots
            FROM network_snapshots
            WHERE timestamp >= ?
        ''', (_iso(start_time),)).fetchone()
        if not row or not row['total_snapshots']:
            return None
        return dict(row)


# --- Retention ---

def blocking_db_prune(db_path: str, retention_days: int) -> Dict[str, int]:
    """
    Delete rows older than ``retention_days`` from every retained table.

    Returns:
        Number of rows deleted per table
    """
    cutoff_iso = _iso(datetime.datetime.now(datetime.timezone.utc)
                      - datetime.timedelta(days=retention_days))
    log.info(f"[DB_PRUNER] Deleting rows older than {cutoff_iso} ({retention_days}d retention)")

    deleted = {}
    with closing(_connect(db_path)) as conn:
        cursor = conn.cursor()
        for table in RETENTION_TABLES:
            cursor.execute(f"DELETE FROM {table} WHERE timestamp < ?", (cutoff_iso,))
            deleted[table] = cursor.rowcount
        conn.commit()

    for table, count in deleted.items():
        if count > 0:
            log.info(f"[DB_PRUNER] Pruned {count} old row(s) from {table}.")
    return deleted
