"""
Record types flowing through the collection pipeline.

Registry entries come in from a network's directory, probe results come out of
the prober, and snapshots/history records are what gets persisted.
"""

import datetime
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

ONLINE = 'online'
OFFLINE = 'offline'

# Resource fields reported by a live probe. All default to None ("unknown").
RESOURCE_FIELDS = (
    'version',
    'cpu',
    'ram',
    'ram_used',
    'ram_total',
    'storage',
    'uptime',
    'active_streams',
    'packets_received',
    'packets_sent',
    'current_index',
    'total_pages',
    'peers_count',
)


def number_or_none(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


def text_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


@dataclass
class PodEntry:
    """One member as declared by a network's directory."""

    address: str
    pubkey: Optional[str] = None
    version: Optional[str] = None
    last_seen_timestamp: Optional[float] = None

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> 'PodEntry':
        return cls(
            address=text_or_none(raw.get('address')) or '',
            pubkey=text_or_none(raw.get('pubkey')),
            version=text_or_none(raw.get('version')),
            last_seen_timestamp=number_or_none(raw.get('last_seen_timestamp')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RegistryResult:
    pods: List[PodEntry]
    total_count: int


@dataclass
class NodeProbeResult:
    address: str
    network: str
    status: str
    pubkey: Optional[str] = None
    registry_version: Optional[str] = None
    last_seen: Optional[float] = None
    version: Optional[str] = None
    cpu: Optional[float] = None
    ram: Optional[float] = None
    ram_used: Optional[int] = None
    ram_total: Optional[int] = None
    storage: Optional[int] = None
    uptime: Optional[int] = None
    active_streams: Optional[int] = None
    packets_received: Optional[int] = None
    packets_sent: Optional[int] = None
    current_index: Optional[int] = None
    total_pages: Optional[int] = None
    peers_count: Optional[int] = None

    @property
    def is_online(self) -> bool:
        return self.status == ONLINE

    @classmethod
    def from_probe(cls, pod: PodEntry, network: str, probe: Dict[str, Any]) -> 'NodeProbeResult':
        """Merge a registry entry with the dict returned by the prober."""
        resources = {name: probe.get(name) for name in RESOURCE_FIELDS}
        return cls(
            address=pod.address,
            network=network,
            status=probe.get('status', OFFLINE),
            pubkey=pod.pubkey,
            registry_version=pod.version,
            last_seen=pod.last_seen_timestamp,
            **resources,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NetworkSnapshot:
    network: str
    timestamp: datetime.datetime
    total_pods: int
    sampled_count: int
    online_nodes: int
    offline_nodes: int
    online_ratio: int
    total_storage: float
    avg_cpu: float
    avg_ram: float
    avg_uptime: float
    total_streams: int
    total_bytes_transferred: int
    version_distribution: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True)
class NodeHistoryRecord:
    address: str
    pubkey: Optional[str]
    network: str
    timestamp: datetime.datetime
    status: str
    version: Optional[str]
    registry_version: Optional[str]
    last_seen: Optional[float]
    cpu: Optional[float]
    ram: Optional[float]
    ram_used: Optional[int]
    ram_total: Optional[int]
    storage: Optional[int]
    uptime: Optional[int]
    active_streams: Optional[int]
    packets_received: Optional[int]
    packets_sent: Optional[int]
    peers_count: Optional[int]

    @classmethod
    def from_result(cls, result: NodeProbeResult, timestamp: datetime.datetime) -> 'NodeHistoryRecord':
        if not result.is_online:
            raise ValueError(f"Refusing to build a history record for offline node {result.address}")
        return cls(
            address=result.address,
            pubkey=result.pubkey,
            network=result.network,
            timestamp=timestamp,
            status=ONLINE,
            version=result.version,
            registry_version=result.registry_version,
            last_seen=result.last_seen,
            cpu=result.cpu,
            ram=result.ram,
            ram_used=result.ram_used,
            ram_total=result.ram_total,
            storage=result.storage,
            uptime=result.uptime,
            active_streams=result.active_streams,
            packets_received=result.packets_received,
            packets_sent=result.packets_sent,
            peers_count=result.peers_count,
        )


@dataclass(frozen=True)
class TransitionEvent:
    """A node's status flipped between two consecutive observations."""

    pubkey: str
    previous_status: str
    current_status: str
    network: str
    address: str
    timestamp: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data
