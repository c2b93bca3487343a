"""
Shared fixtures for Pod Monitor tests.
"""

import builtins
import contextlib
import datetime
import os
import tempfile
from unittest.mock import AsyncMock, MagicMock

import pytest

from pod_monitor import database
from pod_monitor.models import OFFLINE, ONLINE, NodeProbeResult, PodEntry, RegistryResult
from pod_monitor.persistence import Persistence


@pytest.fixture
def temp_db():
    """Create temporary test database with full schema."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    try:
        database.init_db(path)
        yield path
    finally:
        for suffix in ("", "-wal", "-shm"):
            with contextlib.suppress(builtins.BaseException):
                os.unlink(path + suffix)


@pytest.fixture
async def persistence(temp_db):
    """Connected persistence facade over a temporary database."""
    p = Persistence(temp_db)
    await p.connect()
    yield p
    await p.close()


@pytest.fixture
def sample_pods():
    return [
        PodEntry(address="10.0.0.1:9001", pubkey="PubKeyAAAA1111", version="0.8.0", last_seen_timestamp=1700000300),
        PodEntry(address="10.0.0.2:9001", pubkey="PubKeyBBBB2222", version="0.8.0", last_seen_timestamp=1700000200),
        PodEntry(address="10.0.0.3:9001", pubkey="PubKeyCCCC3333", version="0.7.3", last_seen_timestamp=1700000100),
    ]


@pytest.fixture
def sample_registry(sample_pods):
    return RegistryResult(pods=sample_pods, total_count=len(sample_pods))


def online_probe(**overrides):
    probe = {
        "status": ONLINE,
        "version": "0.8.0",
        "cpu": 20.0,
        "ram": 50.0,
        "ram_used": 4_000,
        "ram_total": 8_000,
        "storage": 1_000_000,
        "uptime": 3600,
        "active_streams": 2,
        "packets_received": 100,
        "packets_sent": 50,
        "current_index": 1,
        "total_pages": 1,
        "peers_count": 12,
    }
    probe.update(overrides)
    return probe


def make_result(pod: PodEntry, network="devnet1", online=True, **overrides) -> NodeProbeResult:
    probe = online_probe(**overrides) if online else {"status": OFFLINE}
    return NodeProbeResult.from_probe(pod, network, probe)


@pytest.fixture
def make_node_result():
    return make_result


@pytest.fixture
def mock_rpc_client(sample_registry):
    """RPC client double: a fixed registry and per-address probe answers."""
    client = MagicMock()
    client.network_endpoints = {"devnet1": "http://directory.test/rpc"}
    client.fetch_registry = AsyncMock(return_value=sample_registry)
    client.probe_node = AsyncMock(return_value={"status": OFFLINE})
    return client


@pytest.fixture
def mock_persistence():
    p = MagicMock()
    p.available = True
    p.save_network_snapshot = AsyncMock(return_value=1)
    p.save_node_history = AsyncMock(side_effect=lambda records: len(records) or None)
    p.save_pods_snapshot = AsyncMock(return_value=1)
    p.get_latest_snapshots = AsyncMock(return_value=[])
    p.get_node_history = AsyncMock(return_value=[])
    p.get_network_history = AsyncMock(return_value=[])
    p.get_aggregated_stats = AsyncMock(return_value=None)
    return p


def utc(*args) -> datetime.datetime:
    return datetime.datetime(*args, tzinfo=datetime.timezone.utc)
