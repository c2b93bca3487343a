"""
Time-bucketed history queries.

Snapshots are grouped into fixed-width buckets whose start is
``ts_ms - (ts_ms % interval_ms)``, so bucket boundaries depend only on the
timestamp and the interval. Numeric fields are averaged per bucket.
"""

import datetime
from typing import Any, Dict, Iterable, List, Optional

from .config import DEFAULT_HISTORY_INTERVAL, DEFAULT_HISTORY_PERIOD

PERIOD_SECONDS = {
    '1h': 60 * 60,
    '6h': 6 * 60 * 60,
    '24h': 24 * 60 * 60,
    '7d': 7 * 24 * 60 * 60,
    '30d': 30 * 24 * 60 * 60,
}

INTERVAL_SECONDS = {
    '1m': 60,
    '5m': 5 * 60,
    '15m': 15 * 60,
    '1h': 60 * 60,
    '6h': 6 * 60 * 60,
}

# Chart resolution used when a caller only picks a period
CHART_INTERVAL_FOR_PERIOD = {
    '1h': '1m',
    '6h': '5m',
    '24h': '15m',
    '7d': '1h',
    '30d': '6h',
}

COMPARISON_INTERVAL_FOR_PERIOD = {
    '1h': '5m',
    '6h': '15m',
    '24h': '1h',
    '7d': '6h',
    '30d': '6h',
}

# Averaged snapshot fields and the number of decimals kept after averaging
SNAPSHOT_NUMERIC_FIELDS = {
    'total_pods': 0,
    'sampled_count': 0,
    'online_nodes': 0,
    'offline_nodes': 0,
    'online_ratio': 0,
    'total_storage': 0,
    'avg_cpu': 2,
    'avg_ram': 2,
    'avg_uptime': 0,
    'total_streams': 0,
    'total_bytes_transferred': 0,
}


def period_to_seconds(period: Optional[str]) -> int:
    return PERIOD_SECONDS.get(period, PERIOD_SECONDS[DEFAULT_HISTORY_PERIOD])


def interval_to_seconds(interval: Optional[str]) -> int:
    return INTERVAL_SECONDS.get(interval, INTERVAL_SECONDS[DEFAULT_HISTORY_INTERVAL])


def window_start(period: Optional[str], now: Optional[datetime.datetime] = None) -> datetime.datetime:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return now - datetime.timedelta(seconds=period_to_seconds(period))


def to_epoch_ms(timestamp) -> int:
    if isinstance(timestamp, str):
        timestamp = datetime.datetime.fromisoformat(timestamp)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
    return int(round(timestamp.timestamp() * 1000))


def bucket_start_ms(ts_ms: int, interval_ms: int) -> int:
    return ts_ms - (ts_ms % interval_ms)


def _round(value: float, digits: int):
    if digits == 0:
        return int(round(value))
    return round(value, digits)


def bucket_snapshots(rows: Iterable[Dict[str, Any]], interval_seconds: int) -> List[Dict[str, Any]]:
    """
    Average snapshot rows into buckets of ``interval_seconds``.

    Rows need a ``timestamp`` (ISO string or datetime). Missing numeric values
    are skipped rather than counted as zero. Output is sorted by bucket start.
    """
    interval_ms = interval_seconds * 1000
    buckets: Dict[int, Dict[str, List[float]]] = {}

    for row in rows:
        start = bucket_start_ms(to_epoch_ms(row['timestamp']), interval_ms)
        bucket = buckets.setdefault(start, {name: [] for name in SNAPSHOT_NUMERIC_FIELDS})
        for name in SNAPSHOT_NUMERIC_FIELDS:
            value = row.get(name)
            if value is not None:
                bucket[name].append(value)

    series = []
    for start in sorted(buckets):
        point = {
            'timestamp': datetime.datetime.fromtimestamp(
                start / 1000, tz=datetime.timezone.utc
            ).isoformat(),
        }
        for name, digits in SNAPSHOT_NUMERIC_FIELDS.items():
            values = buckets[start][name]
            point[name] = _round(sum(values) / len(values), digits) if values else None
        series.append(point)
    return series
