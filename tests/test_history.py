import datetime

import pytest

from pod_monitor.history import (
    bucket_snapshots,
    bucket_start_ms,
    interval_to_seconds,
    period_to_seconds,
    to_epoch_ms,
    window_start,
)


def _row(ts, **values):
    row = {"timestamp": ts, "online_nodes": 0, "avg_cpu": 0.0}
    row.update(values)
    return row


def test_period_and_interval_fallbacks():
    assert period_to_seconds("7d") == 7 * 86400
    assert period_to_seconds("bogus") == 86400
    assert period_to_seconds(None) == 86400
    assert interval_to_seconds("1h") == 3600
    assert interval_to_seconds("2m") == 900


def test_window_start():
    now = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)
    assert window_start("1h", now) == now - datetime.timedelta(hours=1)
    assert window_start("unknown", now) == now - datetime.timedelta(hours=24)


def test_to_epoch_ms_accepts_strings_and_naive_datetimes():
    aware = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    assert to_epoch_ms("2024-01-01T00:00:00.000+00:00") == to_epoch_ms(aware)
    assert to_epoch_ms(datetime.datetime(2024, 1, 1)) == to_epoch_ms(aware)


def test_bucket_start_ms():
    assert bucket_start_ms(1_000_123, 1000) == 1_000_000
    assert bucket_start_ms(900_000, 900_000) == 900_000


def test_bucketing_averages_and_rounds():
    rows = [
        _row("2024-01-01T00:01:00.000+00:00", online_nodes=10, avg_cpu=10.0),
        _row("2024-01-01T00:14:59.000+00:00", online_nodes=13, avg_cpu=20.5),
        _row("2024-01-01T00:15:00.000+00:00", online_nodes=7, avg_cpu=5.0),
    ]

    series = bucket_snapshots(rows, 15 * 60)

    assert len(series) == 2
    first, second = series
    assert first["timestamp"] == "2024-01-01T00:00:00+00:00"
    assert first["online_nodes"] == 12  # 11.5 rounds to even
    assert first["avg_cpu"] == pytest.approx(15.25)
    assert second["timestamp"] == "2024-01-01T00:15:00+00:00"
    assert second["online_nodes"] == 7
    assert isinstance(second["online_nodes"], int)


def test_bucketing_is_deterministic_and_sorted():
    rows = [
        _row("2024-01-01T01:00:00.000+00:00", online_nodes=1),
        _row("2024-01-01T00:00:00.000+00:00", online_nodes=2),
        _row("2024-01-01T00:30:00.000+00:00", online_nodes=3),
    ]

    first = bucket_snapshots(rows, 3600)
    second = bucket_snapshots(list(reversed(rows)), 3600)

    assert first == second
    assert [p["timestamp"] for p in first] == ["2024-01-01T00:00:00+00:00", "2024-01-01T01:00:00+00:00"]


def test_missing_values_are_skipped():
    rows = [
        _row("2024-01-01T00:00:00.000+00:00", avg_ram=None, total_storage=100),
        _row("2024-01-01T00:01:00.000+00:00", total_storage=300),
    ]

    point = bucket_snapshots(rows, 3600)[0]

    assert point["avg_ram"] is None
    assert point["total_storage"] == 200


def test_empty_input():
    assert bucket_snapshots([], 900) == []
