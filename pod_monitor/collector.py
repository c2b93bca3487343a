"""
Fleet collection: registry fetch, bounded batch probing, aggregation,
persistence and alerting for every configured network.
"""

import asyncio
import datetime
import logging
import math
import time
from typing import Callable, Dict, List, Optional

from .config import COLLECTOR_BATCH_SIZE, SAVE_PODS_SNAPSHOTS
from .models import (OFFLINE, NetworkSnapshot, NodeHistoryRecord, NodeProbeResult,
                     PodEntry, RegistryResult)
from .state import FleetState

log = logging.getLogger("PodMonitor.Collector")

ProgressCallback = Callable[[int, int, int], None]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0


async def probe_in_batches(
    client,
    pods: List[PodEntry],
    network: str,
    batch_size: int = COLLECTOR_BATCH_SIZE,
    on_progress: Optional[ProgressCallback] = None,
) -> List[NodeProbeResult]:
    """
    Probe every member of one network, ``batch_size`` at a time.

    Groups run one after another; members of a group are probed concurrently
    and the group finishes when all of them have. A probe that raises is
    recorded as offline instead of failing the group.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    results: List[NodeProbeResult] = []
    online_count = 0
    total = len(pods)

    for i in range(0, total, batch_size):
        batch = pods[i:i + batch_size]
        probes = await asyncio.gather(
            *(client.probe_node(pod.address) for pod in batch),
            return_exceptions=True,
        )
        for pod, probe in zip(batch, probes):
            if isinstance(probe, BaseException):
                log.warning(f"[{network}] Probe of {pod.address} raised {type(probe).__name__}: {probe}")
                probe = {'status': OFFLINE}
            result = NodeProbeResult.from_probe(pod, network, probe)
            if result.is_online:
                online_count += 1
            results.append(result)

        log.info(f"[{network}] Progress: {len(results)}/{total} nodes, {online_count} online")
        if on_progress:
            on_progress(len(results), online_count, total)

    return results


def aggregate_network(
    network: str,
    node_results: List[NodeProbeResult],
    registry: RegistryResult,
    timestamp: Optional[datetime.datetime] = None,
) -> NetworkSnapshot:
    """
    Reduce one cycle's probe results to a network snapshot.

    Resource aggregates cover online nodes only. The version histogram covers
    the whole registry, including members that did not answer.
    """
    online = [r for r in node_results if r.is_online]
    offline = [r for r in node_results if not r.is_online]
    sampled = len(node_results)

    version_distribution: Dict[str, int] = {}
    for pod in registry.pods:
        if pod.version:
            version_distribution[pod.version] = version_distribution.get(pod.version, 0) + 1

    return NetworkSnapshot(
        network=network,
        timestamp=timestamp or datetime.datetime.now(datetime.timezone.utc),
        total_pods=registry.total_count or len(registry.pods),
        sampled_count=sampled,
        online_nodes=len(online),
        offline_nodes=len(offline),
        online_ratio=_round_half_up(len(online) / sampled * 100) if sampled else 0,
        total_storage=sum(r.storage or 0 for r in online),
        avg_cpu=_average([r.cpu or 0 for r in online]),
        avg_ram=_average([r.ram or 0 for r in online]),
        avg_uptime=_average([r.uptime or 0 for r in online]),
        total_streams=sum(r.active_streams or 0 for r in online),
        total_bytes_transferred=sum((r.packets_received or 0) + (r.packets_sent or 0) for r in online),
        version_distribution=version_distribution,
    )


class Collector:
    """
    Runs collection cycles. Owns the in-memory fleet view; the persistence
    layer and the alert engine are injected.
    """

    def __init__(self, client, persistence, alert_engine=None,
                 networks: Optional[List[str]] = None,
                 batch_size: int = COLLECTOR_BATCH_SIZE,
                 save_pods_snapshots: bool = SAVE_PODS_SNAPSHOTS):
        self.client = client
        self.persistence = persistence
        self.alert_engine = alert_engine
        self.networks = list(networks if networks is not None else client.network_endpoints)
        if not self.networks:
            raise ValueError("Collector needs at least one network to collect.")
        self.batch_size = batch_size
        self.save_pods_snapshots = save_pods_snapshots
        self.fleet = FleetState(self.networks)
        self.last_cycle: Optional[Dict] = None

    async def collect_network_data(self, network: str) -> Optional[NetworkSnapshot]:
        log.info(f"[{network}] Collecting data...")

        registry = await self.client.fetch_registry(network)
        if registry is None:
            log.warning(f"[{network}] No pods data, skipping network this cycle")
            return None

        log.info(
            f"[{network}] Probing all {len(registry.pods)} nodes "
            f"(registry total {registry.total_count}, batch size {self.batch_size})..."
        )
        node_results = await probe_in_batches(self.client, registry.pods, network, self.batch_size)

        snapshot = aggregate_network(network, node_results, registry)
        self.fleet.update(network, registry, snapshot, node_results)

        # No transaction links these writes; readers tolerate a snapshot without history rows.
        await self.persistence.save_network_snapshot(snapshot)
        history = [NodeHistoryRecord.from_result(r, snapshot.timestamp) for r in node_results if r.is_online]
        await self.persistence.save_node_history(history)
        if self.save_pods_snapshots:
            await self.persistence.save_pods_snapshot(network, registry, snapshot.timestamp)

        if self.alert_engine is not None:
            await self.alert_engine.check_node_alerts(node_results)

        log.info(
            f"[{network}] {snapshot.total_pods} total, {snapshot.online_nodes} online, "
            f"{snapshot.offline_nodes} offline ({snapshot.online_ratio}% online)"
        )
        return snapshot

    async def collect_all_networks(self) -> Dict[str, Optional[NetworkSnapshot]]:
        """One cycle: every network, sequentially. Always completes."""
        log.info("[COLLECTOR] Starting data collection cycle...")
        started = time.monotonic()

        results: Dict[str, Optional[NetworkSnapshot]] = {}
        for network in self.networks:
            try:
                results[network] = await self.collect_network_data(network)
            except Exception as e:
                log.error(f"[{network}] Error collecting network: {e}", exc_info=True)
                results[network] = None

        duration = time.monotonic() - started
        self.last_cycle = {
            'completed_at': datetime.datetime.now(datetime.timezone.utc),
            'duration_seconds': round(duration, 2),
            'networks': {network: snapshot is not None for network, snapshot in results.items()},
        }
        log.info(f"[COLLECTOR] Collection cycle completed in {duration:.2f}s")
        return results
