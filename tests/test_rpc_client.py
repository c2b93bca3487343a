"""
Unit tests for the pod RPC client: probe classification, registry parsing
and failure handling.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from pod_monitor.models import OFFLINE, ONLINE
from pod_monitor.rpc_client import PodRPCClient, build_probe_result, node_rpc_endpoint


def _response(status=200, body=None):
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=body)
    return MagicMock(__aenter__=AsyncMock(return_value=resp), __aexit__=AsyncMock(return_value=None))


class TestBuildProbeResult:
    def test_offline_when_version_and_stats_missing(self):
        assert build_probe_result(None, None, {"total_count": 5}) == {"status": OFFLINE}

    def test_peer_list_does_not_decide_liveness(self):
        """A node answering version but failing get-pods is still online."""
        result = build_probe_result("0.8.0", None, None)
        assert result["status"] == ONLINE
        assert result["version"] == "0.8.0"
        assert result["peers_count"] is None

    def test_stats_alone_means_online(self):
        result = build_probe_result(None, {"cpu_percent": 12.5}, None)
        assert result["status"] == ONLINE
        assert result["version"] is None
        assert result["cpu"] == 12.5

    def test_version_object_form(self):
        result = build_probe_result({"version": "1.2.3"}, None, None)
        assert result["version"] == "1.2.3"

    def test_field_mapping(self):
        stats = {
            "cpu_percent": 30.0,
            "ram_used": 2048,
            "ram_total": 8192,
            "file_size": 123456,
            "uptime": 7200,
            "active_streams": 3,
            "packets_received": 10,
            "packets_sent": 20,
            "current_index": 4,
            "total_pages": 9,
        }
        result = build_probe_result("0.8.0", stats, {"total_count": 42})

        assert result["ram"] == pytest.approx(25.0)
        assert result["storage"] == 123456
        assert result["uptime"] == 7200
        assert result["packets_sent"] == 20
        assert result["current_index"] == 4
        assert result["peers_count"] == 42

    @pytest.mark.parametrize("ram_total", [0, None])
    def test_ram_percent_unknown_without_total(self, ram_total):
        result = build_probe_result("0.8.0", {"ram_used": 100, "ram_total": ram_total}, None)
        assert result["ram"] is None

    def test_missing_fields_stay_none(self):
        result = build_probe_result("0.8.0", {}, None)
        assert result["cpu"] is None
        assert result["storage"] is None
        assert result["uptime"] is None

    def test_wrongly_typed_fields_become_unknown(self):
        stats = {
            "cpu_percent": "12.5",
            "ram_used": "2048",
            "ram_total": 8192,
            "file_size": {"bytes": 1},
            "uptime": "3600",
            "active_streams": True,
            "packets_received": [1],
            "packets_sent": None,
        }
        result = build_probe_result("0.8.0", stats, {"total_count": "42"})

        assert result["status"] == ONLINE
        for field in ("cpu", "ram", "ram_used", "storage", "uptime", "active_streams",
                      "packets_received", "packets_sent", "peers_count"):
            assert result[field] is None, field
        assert result["ram_total"] == 8192

    @pytest.mark.parametrize("version_result", [{"version": {"tag": "0.8.0"}}, {"version": 8}, 8, ["0.8.0"]])
    def test_non_string_version_is_dropped(self, version_result):
        result = build_probe_result(version_result, {"cpu_percent": 1.0}, None)
        assert result["status"] == ONLINE
        assert result["version"] is None


def test_node_rpc_endpoint_discards_gossip_port():
    assert node_rpc_endpoint("192.168.1.10:9001") == "http://192.168.1.10:6000/rpc"
    assert node_rpc_endpoint("192.168.1.10", port=7000) == "http://192.168.1.10:7000/rpc"


class TestPodRPCClient:
    @pytest.mark.asyncio
    async def test_fetch_registry_sorts_by_last_seen(self):
        client = PodRPCClient({"devnet1": "http://directory.test/rpc"})
        client.session = MagicMock()
        client.session.post = MagicMock(return_value=_response(body={
            "result": {
                "pods": [
                    {"address": "1.1.1.1:9001", "pubkey": "a" * 12, "last_seen_timestamp": 100},
                    {"address": "2.2.2.2:9001", "pubkey": "b" * 12, "last_seen_timestamp": 300},
                    {"address": "3.3.3.3:9001", "last_seen_timestamp": 200},
                ],
                "total_count": 10,
            }
        }))

        registry = await client.fetch_registry("devnet1")

        assert [p.address for p in registry.pods] == ["2.2.2.2:9001", "3.3.3.3:9001", "1.1.1.1:9001"]
        assert registry.total_count == 10
        assert registry.pods[1].pubkey is None

        _, kwargs = client.session.post.call_args
        assert kwargs["json"] == {"jsonrpc": "2.0", "method": "get-pods", "id": 1}
        assert kwargs["timeout"].total == client.registry_timeout

    @pytest.mark.asyncio
    async def test_fetch_registry_total_count_defaults_to_length(self):
        client = PodRPCClient({"devnet1": "http://directory.test/rpc"})
        client.session = MagicMock()
        client.session.post = MagicMock(return_value=_response(body={
            "result": {"pods": [{"address": "1.1.1.1:9001"}]}
        }))

        registry = await client.fetch_registry("devnet1")
        assert registry.total_count == 1

    @pytest.mark.asyncio
    async def test_fetch_registry_unknown_network(self):
        client = PodRPCClient({"devnet1": "http://directory.test/rpc"})
        assert await client.fetch_registry("nope") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        _response(status=503, body={}),
        _response(body=["not", "an", "object"]),
        _response(body={"result": {"no_pods": True}}),
        _response(body={"error": {"code": -1}}),
    ])
    async def test_fetch_registry_bad_responses(self, response):
        client = PodRPCClient({"devnet1": "http://directory.test/rpc"})
        client.session = MagicMock()
        client.session.post = MagicMock(return_value=response)

        assert await client.fetch_registry("devnet1") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [asyncio.TimeoutError(), aiohttp.ClientConnectionError("refused")])
    async def test_call_failures_become_none(self, error):
        client = PodRPCClient({"devnet1": "http://directory.test/rpc"})
        context = MagicMock()
        context.__aenter__ = AsyncMock(side_effect=error)
        context.__aexit__ = AsyncMock(return_value=None)
        client.session = MagicMock()
        client.session.post = MagicMock(return_value=context)

        assert await client.call("http://x/rpc", "get-version", 1) is None

    @pytest.mark.asyncio
    async def test_probe_node_issues_three_calls(self):
        client = PodRPCClient({"devnet1": "http://directory.test/rpc"})
        answers = {
            "get-version": "0.8.0",
            "get-stats": {"cpu_percent": 5, "ram_used": 1, "ram_total": 4},
            "get-pods": None,
        }
        client.call = AsyncMock(side_effect=lambda endpoint, method, timeout: answers[method])

        result = await client.probe_node("10.0.0.9:9001")

        called = sorted(c.args[1] for c in client.call.call_args_list)
        assert called == ["get-pods", "get-stats", "get-version"]
        assert all(c.args[0] == "http://10.0.0.9:6000/rpc" for c in client.call.call_args_list)
        assert all(c.args[2] == client.node_timeout for c in client.call.call_args_list)
        assert result["status"] == ONLINE
        assert result["ram"] == pytest.approx(25.0)
        assert result["peers_count"] is None

    @pytest.mark.asyncio
    async def test_probe_node_all_failures_offline(self):
        client = PodRPCClient({"devnet1": "http://directory.test/rpc"})
        client.call = AsyncMock(return_value=None)

        assert await client.probe_node("10.0.0.9:9001") == {"status": OFFLINE}

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        mock_session = MagicMock()
        mock_session.closed = False
        mock_session.close = AsyncMock()
        with patch("aiohttp.ClientSession", return_value=mock_session) as session_cls:
            client = PodRPCClient({"devnet1": "http://directory.test/rpc"})
            await client.start()
            assert client.session is mock_session
            assert session_cls.call_args.kwargs["headers"]["User-Agent"]

            await client.stop()
            mock_session.close.assert_awaited_once()
            assert client.session is None

    @pytest.mark.asyncio
    async def test_fetch_registry_tolerates_mixed_field_types(self):
        client = PodRPCClient({"devnet1": "http://directory.test/rpc"})
        client.session = MagicMock()
        client.session.post = MagicMock(return_value=_response(body={
            "result": {
                "pods": [
                    {"address": "1.1.1.1:9001", "version": {"tag": "0.8.0"}, "last_seen_timestamp": "2024-01-01"},
                    {"address": "2.2.2.2:9001", "version": "0.8.0", "last_seen_timestamp": 5},
                ],
                "total_count": "many",
            }
        }))

        registry = await client.fetch_registry("devnet1")

        assert [p.address for p in registry.pods] == ["2.2.2.2:9001", "1.1.1.1:9001"]
        assert registry.pods[1].version is None
        assert registry.pods[1].last_seen_timestamp is None
        assert registry.total_count == 2

    @pytest.mark.asyncio
    async def test_probe_node_port_override(self):
        client = PodRPCClient({"devnet1": "http://directory.test/rpc"})
        client.call = AsyncMock(return_value=None)

        await client.probe_node("10.0.0.9", port=7000)

        assert all(c.args[0] == "http://10.0.0.9:7000/rpc" for c in client.call.call_args_list)
