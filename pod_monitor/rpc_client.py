"""
Pod RPC Client

This module talks JSON-RPC to two kinds of endpoints:

- a network's directory endpoint, which lists the current members ("get-pods")
- each member's own RPC endpoint, which reports its version, live stats and peers

Every request runs under its own aiohttp timeout. Failures never escape this
module: they are logged and turned into ``None`` so the collector can classify
the node (or skip the network) and move on.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from .config import (
    NETWORK_RPC_ENDPOINTS,
    NODE_RPC_PORT,
    NODE_RPC_TIMEOUT_SECONDS,
    REGISTRY_TIMEOUT_SECONDS,
    USER_AGENT,
)
from .models import OFFLINE, ONLINE, PodEntry, RegistryResult, number_or_none, text_or_none

log = logging.getLogger("PodMonitor.RPCClient")


def node_rpc_endpoint(address: str, port: int = NODE_RPC_PORT) -> str:
    """Build a member's RPC URL from its registry address ("ip:gossip_port")."""
    ip = address.split(':')[0]
    return f"http://{ip}:{port}/rpc"


def build_probe_result(
    version_result: Any,
    stats_result: Optional[Dict[str, Any]],
    pods_result: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Classify one node from its three sub-call results.

    A node is online when either the version or the stats call answered.
    The peer list is not used for liveness: a node whose get-pods call fails
    is still online, it just has no peer count. Fields of the wrong type are
    reported as unknown.
    """
    if not version_result and not stats_result:
        return {'status': OFFLINE}

    if isinstance(version_result, dict):
        version = text_or_none(version_result.get('version'))
    else:
        version = text_or_none(version_result)

    stats = stats_result if isinstance(stats_result, dict) else {}
    ram_used = number_or_none(stats.get('ram_used'))
    ram_total = number_or_none(stats.get('ram_total'))
    ram_percent = None
    if ram_total is not None and ram_total > 0 and ram_used is not None:
        ram_percent = (ram_used / ram_total) * 100

    peers_count = None
    if isinstance(pods_result, dict):
        peers_count = number_or_none(pods_result.get('total_count'))

    return {
        'status': ONLINE,
        'version': version,
        'cpu': number_or_none(stats.get('cpu_percent')),
        'ram': ram_percent,
        'ram_used': ram_used,
        'ram_total': ram_total,
        'storage': number_or_none(stats.get('file_size')),
        'uptime': number_or_none(stats.get('uptime')),
        'active_streams': number_or_none(stats.get('active_streams')),
        'packets_received': number_or_none(stats.get('packets_received')),
        'packets_sent': number_or_none(stats.get('packets_sent')),
        'current_index': number_or_none(stats.get('current_index')),
        'total_pages': number_or_none(stats.get('total_pages')),
        'peers_count': peers_count,
    }


class PodRPCClient:
    """
    Client for the directory and per-node JSON-RPC endpoints.
    One instance (and one HTTP session) is shared by a whole collector.
    """

    def __init__(
        self,
        network_endpoints: Optional[Dict[str, str]] = None,
        registry_timeout: float = REGISTRY_TIMEOUT_SECONDS,
        node_timeout: float = NODE_RPC_TIMEOUT_SECONDS,
        node_port: int = NODE_RPC_PORT,
        connection_limit: int = 100,
    ):
        self.network_endpoints = dict(network_endpoints or NETWORK_RPC_ENDPOINTS)
        self.registry_timeout = registry_timeout
        self.node_timeout = node_timeout
        self.node_port = node_port
        self.connection_limit = connection_limit
        self.session: Optional[aiohttp.ClientSession] = None

    async def start(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=self.connection_limit),
                headers={'User-Agent': USER_AGENT},
                raise_for_status=False,  # Handle status codes manually
            )
            log.info(f"RPC client started for networks: {list(self.network_endpoints)}")

    async def stop(self):
        if self.session:
            await self.session.close()
            self.session = None
            log.info("RPC client session closed")

    async def call(self, endpoint: str, method: str, timeout: float) -> Optional[Any]:
        """
        Issue one JSON-RPC call and return its ``result``, or None on any failure.

        The timeout is enforced by aiohttp, which cancels the request instead of
        leaving it pending.
        """
        if self.session is None:
            await self.start()

        payload = {'jsonrpc': '2.0', 'method': method, 'id': 1}
        try:
            async with self.session.post(
                endpoint, json=payload, timeout=aiohttp.ClientTimeout(total=timeout)
            ) as resp:
                if resp.status != 200:
                    log.debug(f"RPC {method} at {endpoint} returned status {resp.status}")
                    return None
                data = await resp.json(content_type=None)
                if not isinstance(data, dict):
                    log.debug(f"RPC {method} at {endpoint} returned non-object body")
                    return None
                return data.get('result') or None
        except asyncio.TimeoutError:
            log.debug(f"RPC {method} at {endpoint} timed out after {timeout}s")
            return None
        except aiohttp.ClientError as e:
            log.debug(f"RPC {method} at {endpoint} failed: {e}")
            return None
        except ValueError as e:
            # Malformed JSON
            log.debug(f"RPC {method} at {endpoint} returned invalid JSON: {e}")
            return None

    async def fetch_registry(self, network: str) -> Optional[RegistryResult]:
        """
        Fetch the member list of one network from its directory endpoint.

        Returns None when the network is unknown or the directory cannot be read;
        callers skip the network for this cycle.
        """
        rpc_url = self.network_endpoints.get(network)
        if not rpc_url:
            log.warning(f"[{network}] No directory endpoint configured")
            return None

        try:
            result = await self.call(rpc_url, 'get-pods', self.registry_timeout)
        except Exception as e:
            log.error(f"[{network}] Failed to fetch pods: {e}", exc_info=True)
            return None

        if not isinstance(result, dict) or not isinstance(result.get('pods'), list):
            log.warning(f"[{network}] Directory returned no pods data")
            return None

        pods = [PodEntry.from_rpc(raw) for raw in result['pods'] if isinstance(raw, dict)]
        # Most recently seen members first
        pods.sort(key=lambda p: p.last_seen_timestamp or 0, reverse=True)
        total_count = number_or_none(result.get('total_count')) or len(pods)
        log.debug(f"[{network}] Directory listed {len(pods)} pods (total_count={total_count})")
        return RegistryResult(pods=pods, total_count=total_count)

    async def probe_node(self, address: str, port: Optional[int] = None) -> Dict[str, Any]:
        """
        Probe one member: version, live stats and peer list, concurrently.

        Each sub-call fails independently; see ``build_probe_result`` for the
        online/offline rule. ``port`` overrides the configured node RPC port.
        """
        endpoint = node_rpc_endpoint(address, port or self.node_port)
        version_result, stats_result, pods_result = await asyncio.gather(
            self.call(endpoint, 'get-version', self.node_timeout),
            self.call(endpoint, 'get-stats', self.node_timeout),
            self.call(endpoint, 'get-pods', self.node_timeout),
            return_exceptions=True,
        )
        version_result = None if isinstance(version_result, BaseException) else version_result
        stats_result = None if isinstance(stats_result, BaseException) else stats_result
        pods_result = None if isinstance(pods_result, BaseException) else pods_result
        return build_probe_result(version_result, stats_result, pods_result)
