"""
Fleet - Polling and aggregation for the pNode storage fleet.

The Fleet system watches a fixed list of nodes over pRPC:
- Pollers ask every node for stats and pods, concurrently, with deadlines
- The aggregator and query view read the resulting snapshots
- The controller schedules rounds and never overlaps them

Components:
    - types.py: Snapshot and metrics data types
    - poller.py: Node and fleet pollers
    - aggregator.py: Fleet-wide metrics
    - query.py: Search/status filtering
    - controller.py: Single-flight scheduler and CLI

Usage:
    # Query fleet status from the command line
    python3 -m fleet.controller --status

    # From code
    from fleet.controller import build_monitor
    snapshot = build_monitor().poll_once()
"""

from fleet.aggregator import aggregate
from fleet.query import StatusFilter, filter_nodes
from fleet.types import FleetMetrics, FleetSnapshot, NodeSnapshot, NodeStatus

__all__ = [
    "FleetMetrics",
    "FleetSnapshot",
    "NodeSnapshot",
    "NodeStatus",
    "StatusFilter",
    "aggregate",
    "filter_nodes",
]
