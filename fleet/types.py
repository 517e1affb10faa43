"""
Fleet Types - Shared data structures for fleet polling.

These types flow from the pollers to the aggregator, the query view, and
whatever presents the results. All of them are frozen: a snapshot handed
to a consumer stays valid while later rounds are being produced.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple


class NodeStatus(str, Enum):
    """Health classification of a node for one round."""
    ONLINE = "online"         # Metrics obtained, within thresholds
    DEGRADED = "degraded"     # Metrics obtained, a threshold breached
    OFFLINE = "offline"       # No metrics this round


def _number(data: Dict[str, Any], key: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"field '{key}' must be a number, got {value!r}")
    return float(value)


def _count(data: Dict[str, Any], key: str) -> int:
    value = _number(data, key)
    if value < 0:
        raise ValueError(f"field '{key}' must be non-negative, got {value!r}")
    return int(value)


@dataclass(frozen=True)
class NodeMetrics:
    """Resource metrics reported by getStats."""
    cpu_percent: float
    memory_percent: float
    storage_used: int      # bytes
    storage_percent: float
    uptime: int            # seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu_percent": round(self.cpu_percent, 1),
            "memory_percent": round(self.memory_percent, 1),
            "storage_used": self.storage_used,
            "storage_percent": round(self.storage_percent, 1),
            "uptime": self.uptime,
        }

    @classmethod
    def from_result(cls, data: Any) -> "NodeMetrics":
        """
        Parse a getStats result.

        Raises:
            ValueError: result is not an object or a field is missing/mistyped
        """
        if not isinstance(data, dict):
            raise ValueError(f"getStats result must be an object, got {type(data).__name__}")
        return cls(
            cpu_percent=_number(data, "cpu_percent"),
            memory_percent=_number(data, "memory_percent"),
            storage_used=_count(data, "storage_used"),
            storage_percent=_number(data, "storage_percent"),
            uptime=_count(data, "uptime"),
        )


@dataclass(frozen=True)
class MembershipInfo:
    """
    Identity reported by getPods.

    Only the first pod in the list is taken as the node's own identity.
    A node's entry can sit anywhere in (or be missing from) the gossip
    list, so pubkey is best-effort.
    """
    pubkey: Optional[str] = None
    ip: Optional[str] = None
    gossip_port: Optional[int] = None
    pod_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pubkey": self.pubkey,
            "ip": self.ip,
            "gossip_port": self.gossip_port,
            "pod_count": self.pod_count,
        }

    @classmethod
    def from_result(cls, data: Any) -> "MembershipInfo":
        """
        Parse a getPods result.

        Raises:
            ValueError: result is not an object or pods is not a list
        """
        if not isinstance(data, dict):
            raise ValueError(f"getPods result must be an object, got {type(data).__name__}")

        pods = data.get("pods", [])
        if not isinstance(pods, list):
            raise ValueError(f"field 'pods' must be a list, got {pods!r}")

        total_count = data.get("total_count", len(pods))
        if isinstance(total_count, bool) or not isinstance(total_count, int):
            total_count = len(pods)

        first = pods[0] if pods and isinstance(pods[0], dict) else {}
        pubkey = first.get("pubkey")
        ip = first.get("ip")
        port = first.get("gossip_port")

        return cls(
            pubkey=pubkey if isinstance(pubkey, str) else None,
            ip=ip if isinstance(ip, str) else None,
            gossip_port=port if isinstance(port, int) and not isinstance(port, bool) else None,
            pod_count=total_count,
        )


@dataclass(frozen=True)
class NodeSnapshot:
    """One node's observed state for one polling round."""
    address: str
    status: NodeStatus
    metrics: Optional[NodeMetrics] = None
    membership: Optional[MembershipInfo] = None
    observed_at: Optional[str] = None    # ISO format, poll start
    error: Optional[str] = None
    error_kind: Optional[str] = None     # Timeout, TransportError, ...

    @property
    def pubkey(self) -> Optional[str]:
        return self.membership.pubkey if self.membership else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "status": self.status.value,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "membership": self.membership.to_dict() if self.membership else None,
            "observed_at": self.observed_at,
            "error": self.error,
            "error_kind": self.error_kind,
        }

    @classmethod
    def offline(
        cls,
        address: str,
        error: str,
        error_kind: Optional[str] = None,
    ) -> "NodeSnapshot":
        """Create a snapshot for a node nothing was learned about."""
        return cls(
            address=address,
            status=NodeStatus.OFFLINE,
            error=error,
            error_kind=error_kind,
        )


@dataclass(frozen=True)
class FleetSnapshot:
    """All node snapshots of one round, in configured address order."""
    nodes: Tuple[NodeSnapshot, ...] = ()
    round_id: int = 0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[NodeSnapshot]:
        return iter(self.nodes)

    @property
    def addresses(self) -> Tuple[str, ...]:
        return tuple(n.address for n in self.nodes)

    def get(self, address: str) -> Optional[NodeSnapshot]:
        for node in self.nodes:
            if node.address == address:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_id": self.round_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "nodes": [n.to_dict() for n in self.nodes],
        }


@dataclass(frozen=True)
class FleetMetrics:
    """Fleet-wide figures derived from one FleetSnapshot."""
    total_nodes: int = 0
    online_nodes: int = 0
    offline_nodes: int = 0
    degraded_nodes: int = 0
    avg_cpu_percent: float = 0.0
    total_storage_used: int = 0   # bytes
    health_percent: float = 0.0

    @property
    def all_offline(self) -> bool:
        """Every configured node is offline (nothing answered this round)."""
        return self.total_nodes > 0 and self.offline_nodes == self.total_nodes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "total_nodes": self.total_nodes,
                "online": self.online_nodes,
                "degraded": self.degraded_nodes,
                "offline": self.offline_nodes,
            },
            "aggregate": {
                "avg_cpu_percent": round(self.avg_cpu_percent, 1),
                "total_storage_used": self.total_storage_used,
                "health_percent": round(self.health_percent),
            },
            "all_offline": self.all_offline,
        }
