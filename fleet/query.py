"""
Query View - Search and status filtering over a FleetSnapshot.

Filtering never touches the snapshot; it returns a new list holding the
matching nodes in snapshot order.
"""

from enum import Enum
from typing import List, Union

from fleet.types import FleetSnapshot, NodeSnapshot


class StatusFilter(str, Enum):
    ALL = "all"
    ONLINE = "online"
    OFFLINE = "offline"
    DEGRADED = "degraded"


def matches_search(node: NodeSnapshot, search_text: str) -> bool:
    """Case-sensitive substring match on address or pubkey."""
    if not search_text:
        return True
    if search_text in node.address:
        return True
    pubkey = node.pubkey
    return pubkey is not None and search_text in pubkey


def matches_status(node: NodeSnapshot, status_filter: StatusFilter) -> bool:
    if status_filter == StatusFilter.ALL:
        return True
    return node.status.value == status_filter.value


def filter_nodes(
    snapshot: FleetSnapshot,
    search_text: str = "",
    status_filter: Union[StatusFilter, str] = StatusFilter.ALL,
) -> List[NodeSnapshot]:
    """
    Select the nodes matching both the search text and the status filter.

    Raises:
        ValueError: status_filter is not one of all/online/offline/degraded
    """
    status_filter = StatusFilter(status_filter)
    search_text = search_text or ""

    return [
        node for node in snapshot.nodes
        if matches_search(node, search_text) and matches_status(node, status_filter)
    ]
