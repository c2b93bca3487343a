import datetime
from typing import Any, Dict, List, Optional

from .models import NetworkSnapshot, NodeProbeResult, RegistryResult


class FleetState:
    """
    Latest in-memory view of every network, refreshed at the end of each
    network's collection. Owned by one Collector instance.
    """

    def __init__(self, networks: List[str]):
        self.networks: Dict[str, Optional[Dict[str, Any]]] = {network: None for network in networks}

    def update(self, network: str, registry: RegistryResult, snapshot: NetworkSnapshot,
               node_results: List[NodeProbeResult]):
        self.networks[network] = {
            'timestamp': snapshot.timestamp,
            'registry': registry,
            'snapshot': snapshot,
            'node_results': node_results,
        }

    def get(self, network: str) -> Optional[Dict[str, Any]]:
        return self.networks.get(network)

    def last_updated(self) -> Optional[datetime.datetime]:
        stamps = [entry['timestamp'] for entry in self.networks.values() if entry]
        return max(stamps) if stamps else None

    def node_results(self, network: Optional[str] = None) -> List[NodeProbeResult]:
        entries = [self.networks.get(network)] if network else list(self.networks.values())
        results = []
        for entry in entries:
            if entry:
                results.extend(entry['node_results'])
        return results

    def find_node(self, key: str) -> Optional[NodeProbeResult]:
        """Look a node up by pubkey, pubkey prefix or address."""
        for result in self.node_results():
            if result.pubkey and (result.pubkey == key or result.pubkey.startswith(key)):
                return result
            if result.address and key in result.address:
                return result
        return None

    def to_payload(self, network: Optional[str] = None) -> Dict[str, Any]:
        """JSON-ready view for the dashboard."""
        names = [network] if network else list(self.networks)
        payload = {}
        for name in names:
            entry = self.networks.get(name)
            if not entry:
                payload[name] = None
                continue
            payload[name] = {
                'timestamp': entry['timestamp'].isoformat(),
                'total_count': entry['registry'].total_count,
                'stats': entry['snapshot'].to_dict(),
                'node_stats': [r.to_dict() for r in entry['node_results']],
            }
        return payload
