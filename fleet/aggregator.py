"""
Fleet Aggregator - Fleet-wide figures from one round's snapshot.

aggregate() is pure: it reads a FleetSnapshot and returns a new
FleetMetrics, so it can be called as often as a consumer likes.

Empty-set policy:
    - No nodes             -> every count, mean and percentage is 0
    - No node with metrics -> avg_cpu_percent is 0
"""

from fleet.types import FleetMetrics, FleetSnapshot, NodeStatus


def aggregate(snapshot: FleetSnapshot) -> FleetMetrics:
    """Reduce a FleetSnapshot to FleetMetrics."""
    status_counts = {
        NodeStatus.ONLINE: 0,
        NodeStatus.DEGRADED: 0,
        NodeStatus.OFFLINE: 0,
    }
    cpu_values = []
    total_storage_used = 0

    for node in snapshot.nodes:
        status_counts[node.status] = status_counts.get(node.status, 0) + 1
        if node.metrics is not None:
            cpu_values.append(node.metrics.cpu_percent)
            total_storage_used += node.metrics.storage_used

    total = len(snapshot.nodes)
    online = status_counts[NodeStatus.ONLINE]

    avg_cpu = sum(cpu_values) / len(cpu_values) if cpu_values else 0.0
    health_pct = (online / total) * 100 if total > 0 else 0.0

    return FleetMetrics(
        total_nodes=total,
        online_nodes=online,
        offline_nodes=status_counts[NodeStatus.OFFLINE],
        degraded_nodes=status_counts[NodeStatus.DEGRADED],
        avg_cpu_percent=avg_cpu,
        total_storage_used=total_storage_used,
        health_percent=health_pct,
    )
