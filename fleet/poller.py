"""
Fleet Poller - Concurrent pRPC polling of every node in the fleet.

NodePoller asks one node for its stats and its pod list at the same time
and turns the two outcomes into a NodeSnapshot. FleetPoller fans NodePoller
out across the configured addresses and fans the snapshots back in, in
configured order, once every node has settled.

Usage:
    from core.rpc import RpcClient
    from fleet.poller import FleetPoller, NodePoller

    poller = FleetPoller(NodePoller(RpcClient()))
    snapshot = poller.poll_fleet(["173.212.220.65", "62.171.169.176"], deadline=8)
    for node in snapshot:
        print(node.address, node.status.value)

Status rules (per node, per round):
    - getStats failed                      -> offline
    - getStats ok, cpu > 90 or memory > 95 -> degraded
    - getStats ok otherwise                -> online
    getPods only contributes identity; a node that answers getPods but
    not getStats is still offline.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from core.rpc import (
    METHOD_GET_PODS,
    METHOD_GET_STATS,
    PendingCall,
    RpcClient,
    RpcError,
    RpcProtocolViolation,
    RpcTransportError,
)
from fleet.types import (
    FleetSnapshot,
    MembershipInfo,
    NodeMetrics,
    NodeSnapshot,
    NodeStatus,
)

logger = logging.getLogger("fleet.poller")

DEFAULT_CPU_THRESHOLD = 90.0
DEFAULT_MEMORY_THRESHOLD = 95.0

# Extra time the round waits past the per-call deadline before giving up
# on a node task
ROUND_GRACE_SECONDS = 2.0

# getStats and getPods
CALLS_PER_NODE = 2


def rpc_workers_for(fleet_size: int, minimum: int = 0) -> int:
    """
    RPC pool size for a fleet.

    Leaves room for a full round of calls next to one round of abandoned
    calls that are still waiting on their sockets.
    """
    return max(minimum, CALLS_PER_NODE * fleet_size * 2)


@dataclass(frozen=True)
class CallOutcome:
    """Parsed result of one RPC call, or the error it failed with."""
    value: Any = None
    error: Optional[RpcError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: RpcError) -> "CallOutcome":
        return cls(error=error)


def classify(
    address: str,
    metrics: CallOutcome,
    membership: CallOutcome,
    started_at: Optional[str] = None,
    cpu_threshold: float = DEFAULT_CPU_THRESHOLD,
    memory_threshold: float = DEFAULT_MEMORY_THRESHOLD,
) -> NodeSnapshot:
    """
    Map a (metrics, membership) outcome pair to a NodeSnapshot.

    Pure and total: every combination yields exactly one snapshot.
    """
    if not metrics.ok and not membership.ok:
        error = metrics.error or membership.error
        return NodeSnapshot.offline(address, str(error), error.kind)

    # At least one call answered this round
    observed_at = started_at
    node_metrics = metrics.value if metrics.ok else None
    node_membership = membership.value if membership.ok else None
    error = metrics.error or membership.error

    if node_metrics is None:
        status = NodeStatus.OFFLINE
    elif (
        node_metrics.cpu_percent > cpu_threshold
        or node_metrics.memory_percent > memory_threshold
    ):
        status = NodeStatus.DEGRADED
    else:
        status = NodeStatus.ONLINE

    return NodeSnapshot(
        address=address,
        status=status,
        metrics=node_metrics,
        membership=node_membership,
        observed_at=observed_at,
        error=str(error) if error else None,
        error_kind=error.kind if error else None,
    )


class NodePoller:
    """Polls a single node: getStats and getPods, concurrently."""

    def __init__(
        self,
        client: RpcClient,
        cpu_threshold: float = DEFAULT_CPU_THRESHOLD,
        memory_threshold: float = DEFAULT_MEMORY_THRESHOLD,
    ):
        self.client = client
        self.cpu_threshold = cpu_threshold
        self.memory_threshold = memory_threshold

    @property
    def default_deadline(self) -> Optional[float]:
        return self.client.default_deadline

    def poll(self, address: str, deadline: Optional[float] = None) -> NodeSnapshot:
        """
        Poll one node and classify it.

        Never raises: every failure ends up in the returned snapshot.
        """
        started_at = datetime.now().isoformat()

        try:
            stats_call = self.client.submit(address, METHOD_GET_STATS, deadline=deadline)
            pods_call = self.client.submit(address, METHOD_GET_PODS, deadline=deadline)
        except Exception as e:
            logger.error(f"Could not start poll of {address}: {e}")
            return NodeSnapshot.offline(address, f"poll not started: {e}", "InternalError")

        metrics = self._resolve(stats_call, NodeMetrics.from_result)
        membership = self._resolve(pods_call, MembershipInfo.from_result)

        snapshot = classify(
            address,
            metrics,
            membership,
            started_at=started_at,
            cpu_threshold=self.cpu_threshold,
            memory_threshold=self.memory_threshold,
        )

        if snapshot.status == NodeStatus.OFFLINE:
            logger.warning(f"{address} offline: {snapshot.error}")
        elif snapshot.error:
            logger.debug(f"{address} partial response: {snapshot.error}")

        return snapshot

    def _resolve(self, call: PendingCall, parse: Callable[[Any], Any]) -> CallOutcome:
        """Wait for a call and parse its result into a CallOutcome."""
        try:
            result = call.result()
        except RpcError as e:
            return CallOutcome.failure(e)
        except Exception as e:
            logger.error(f"Unexpected failure in {call.method}@{call.address}: {e}")
            return CallOutcome.failure(
                RpcTransportError(call.address, call.method, f"{type(e).__name__}: {e}")
            )

        try:
            return CallOutcome(value=parse(result))
        except (ValueError, TypeError) as e:
            return CallOutcome.failure(RpcProtocolViolation(call.address, call.method, str(e)))

    def close(self):
        self.client.close()


class FleetPoller:
    """
    Polls every node of the fleet in parallel.

    Each round gets its own worker pool; the snapshot list is assembled
    only after the fan-in gate, so nothing a straggler does afterwards
    can reach a published FleetSnapshot.
    """

    def __init__(
        self,
        node_poller: NodePoller,
        max_workers: int = 32,
        grace_seconds: float = ROUND_GRACE_SECONDS,
    ):
        self.node_poller = node_poller
        self.max_workers = max_workers
        self.grace_seconds = grace_seconds

    def poll_fleet(
        self,
        addresses: Iterable[str],
        deadline: Optional[float] = None,
        round_id: int = 0,
    ) -> FleetSnapshot:
        """
        Poll all addresses and return one complete FleetSnapshot.

        Args:
            addresses: Node addresses, in the order the snapshot should keep
            deadline: Per-call deadline in seconds (default: client default)
            round_id: Identifier stamped on the snapshot

        Returns:
            FleetSnapshot with exactly one entry per address
        """
        addresses = tuple(addresses)
        started_at = datetime.now().isoformat()

        if not addresses:
            return FleetSnapshot(
                nodes=(),
                round_id=round_id,
                started_at=started_at,
                completed_at=datetime.now().isoformat(),
            )

        if deadline is None:
            deadline = self.node_poller.default_deadline

        workers = max(1, min(len(addresses), self.max_workers))
        round_timeout = None
        if deadline is not None:
            batches = math.ceil(len(addresses) / workers)
            round_timeout = deadline * batches + self.grace_seconds

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fleet-poll")
        try:
            futures = [
                executor.submit(self.node_poller.poll, address, deadline)
                for address in addresses
            ]
            done, not_done = wait(futures, timeout=round_timeout)
            if not_done:
                logger.error(f"{len(not_done)} node poll(s) still running at round gate")

            nodes = tuple(
                self._settle(address, future, done)
                for address, future in zip(addresses, futures)
            )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return FleetSnapshot(
            nodes=nodes,
            round_id=round_id,
            started_at=started_at,
            completed_at=datetime.now().isoformat(),
        )

    def _settle(self, address: str, future, done) -> NodeSnapshot:
        """Turn one node task into a snapshot, whatever happened to it."""
        if future not in done:
            future.cancel()
            return NodeSnapshot.offline(address, "poll did not finish before round gate", "Timeout")

        try:
            return future.result()
        except Exception as e:
            logger.error(f"Error polling {address}: {e}")
            return NodeSnapshot.offline(address, f"internal error: {e}", "InternalError")

    def close(self):
        """Release the RPC client behind the node poller."""
        self.node_poller.close()
