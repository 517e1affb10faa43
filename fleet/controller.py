#!/usr/bin/env python3
"""
Fleet Controller - Scheduled polling of the pNode fleet.

The controller owns the polling schedule for one fleet:
1. Runs a round at start, then every interval (30s by default)
2. Accepts explicit refresh requests at any time
3. Never runs two rounds of the same fleet at once
4. Publishes each complete FleetSnapshot to subscribers

Usage:
    # As a library
    from fleet.controller import build_monitor
    monitor = build_monitor()
    snapshot = monitor.poll_once()
    metrics = monitor.metrics()

    # Standalone daemon
    python3 -m fleet.controller --daemon

    # One-shot status check
    python3 -m fleet.controller --status
    python3 -m fleet.controller --json --filter degraded

Single-flight:
    A trigger that arrives while a round is in flight does not start a
    second round. It is remembered, and however many such triggers
    arrive, exactly one follow-up round runs once the current one ends.
"""

import itertools
import json
import logging
import threading
from typing import Callable, Iterable, List, Optional

from core.config import FleetConfig, load_fleet_config
from core.rpc import RpcClient
from core.transport import HttpTransport
from fleet.aggregator import aggregate
from fleet.formatting import format_bytes, format_uptime, truncate_key
from fleet.poller import FleetPoller, NodePoller, rpc_workers_for
from fleet.query import StatusFilter, filter_nodes
from fleet.types import FleetMetrics, FleetSnapshot, NodeStatus

logger = logging.getLogger("fleet.controller")

DEFAULT_INTERVAL_SECONDS = 30.0


class FleetMonitor:
    """
    Single-flight poll scheduler for one fleet.

    The latest snapshot is swapped in whole once a round completes, so a
    consumer holding an older snapshot keeps a valid, unchanged value.
    """

    def __init__(
        self,
        addresses: Iterable[str],
        poller: FleetPoller,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        deadline_seconds: Optional[float] = None,
    ):
        self.addresses = tuple(addresses)
        self.poller = poller
        self.interval_seconds = interval_seconds
        self.deadline_seconds = deadline_seconds

        self._round_lock = threading.Lock()
        self._pending = threading.Event()
        self._stop = threading.Event()
        self._round_ids = itertools.count(1)
        self._latest: Optional[FleetSnapshot] = None
        self._subscribers: List[Callable[[FleetSnapshot], None]] = []
        self._thread: Optional[threading.Thread] = None

    @property
    def latest(self) -> Optional[FleetSnapshot]:
        """Most recently published snapshot (None before the first round)."""
        return self._latest

    @property
    def in_flight(self) -> bool:
        return self._round_lock.locked()

    def metrics(self) -> FleetMetrics:
        """Aggregate the latest snapshot (empty metrics before round one)."""
        return aggregate(self._latest or FleetSnapshot())

    def subscribe(self, callback: Callable[[FleetSnapshot], None]):
        """Call `callback(snapshot)` after every published round."""
        self._subscribers.append(callback)

    # =========================================================================
    # ROUNDS
    # =========================================================================

    def poll_once(self) -> Optional[FleetSnapshot]:
        """
        Run a round now, unless one is already running.

        Returns:
            The snapshot this call published, or None if another round was
            in flight (a follow-up round is then queued behind it).
        """
        snapshot = None
        while True:
            if not self._round_lock.acquire(blocking=False):
                self._pending.set()
                # The running round may have ended before the flag was set
                if not self._round_lock.acquire(blocking=False):
                    logger.debug("Round in flight, trigger coalesced")
                    return snapshot
            try:
                self._pending.clear()
                snapshot = self._run_round()
            finally:
                self._round_lock.release()

            if not self._pending.is_set():
                return snapshot

    def trigger(self):
        """Request a round from any thread (picked up by the daemon loop)."""
        self._pending.set()

    def _run_round(self) -> FleetSnapshot:
        round_id = next(self._round_ids)
        logger.debug(f"Round {round_id}: polling {len(self.addresses)} nodes")

        snapshot = self.poller.poll_fleet(
            self.addresses,
            deadline=self.deadline_seconds,
            round_id=round_id,
        )
        self._latest = snapshot

        metrics = aggregate(snapshot)
        logger.info(
            f"Fleet: {metrics.online_nodes} online, "
            f"{metrics.degraded_nodes} degraded, "
            f"{metrics.offline_nodes} offline"
        )
        if metrics.all_offline:
            logger.warning(
                f"All {metrics.total_nodes} nodes offline - check network path to the pRPC port"
            )

        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Snapshot subscriber failed: {e}")

        return snapshot

    # =========================================================================
    # DAEMON
    # =========================================================================

    def start(self):
        """Start the background poll loop (first round runs immediately)."""
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="fleet-monitor", daemon=True)
        self._thread.start()
        logger.info(f"Starting fleet monitor (interval={self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        self._pending.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def close(self):
        """Stop the loop and release the poller's RPC resources."""
        self.stop()
        close = getattr(self.poller, "close", None)
        if close:
            close()

    def run_forever(self):
        """Run the poll loop in the calling thread until stop()."""
        self._stop.clear()
        self._loop()

    def _loop(self):
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Error in poll loop: {e}")

            if self._stop.is_set():
                break
            # Sleep until the next tick, or wake early on trigger()/stop()
            self._pending.wait(self.interval_seconds)


def build_monitor(config: Optional[FleetConfig] = None) -> FleetMonitor:
    """Wire transport, client, pollers and monitor from a FleetConfig."""
    if config is None:
        config = load_fleet_config()

    transport = HttpTransport(config.url_template, headers=config.headers)
    client = RpcClient(
        transport,
        default_deadline=config.deadline_seconds,
        max_workers=rpc_workers_for(len(config.addresses), config.max_workers),
    )
    node_poller = NodePoller(
        client,
        cpu_threshold=config.cpu_threshold,
        memory_threshold=config.memory_threshold,
    )
    poller = FleetPoller(node_poller, max_workers=config.max_workers)

    return FleetMonitor(
        config.addresses,
        poller,
        interval_seconds=config.interval_seconds,
        deadline_seconds=config.deadline_seconds,
    )


# =============================================================================
# CLI
# =============================================================================

_STATUS_ICONS = {
    NodeStatus.ONLINE: "✓",
    NodeStatus.DEGRADED: "!",
    NodeStatus.OFFLINE: "○",
}


def render_status(
    snapshot: FleetSnapshot,
    search_text: str = "",
    status_filter: str = "all",
) -> str:
    """Text status report for one snapshot."""
    metrics = aggregate(snapshot)
    nodes = filter_nodes(snapshot, search_text, status_filter)

    lines = [
        f"\nFleet Status ({snapshot.completed_at})",
        "=" * 50,
        f"Nodes: {metrics.total_nodes} total",
        f"  Online:   {metrics.online_nodes}",
        f"  Degraded: {metrics.degraded_nodes}",
        f"  Offline:  {metrics.offline_nodes}",
        f"Health:    {metrics.health_percent:.0f}%",
        f"Avg CPU:   {metrics.avg_cpu_percent:.1f}%",
        f"Storage:   {format_bytes(metrics.total_storage_used)}",
    ]
    if metrics.all_offline:
        lines.append("\nWARNING: no node answered this round")

    lines.append(f"\nNodes ({len(nodes)} shown):")
    for node in nodes:
        icon = _STATUS_ICONS.get(node.status, "?")
        line = f"  [{icon}] {node.address:<18} {node.status.value:<9} {truncate_key(node.pubkey)}"
        if node.metrics:
            line += (
                f"  cpu {node.metrics.cpu_percent:.1f}%"
                f"  storage {format_bytes(node.metrics.storage_used)}"
                f"  up {format_uptime(node.metrics.uptime)}"
            )
        lines.append(line)
        if node.error:
            lines.append(f"      {node.error}")

    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description="pNode Fleet Controller")
    parser.add_argument("--config", type=str, help="Path to fleet.yaml")
    parser.add_argument("--status", action="store_true", help="Poll once and show fleet status")
    parser.add_argument("--json", action="store_true", help="Poll once and print JSON")
    parser.add_argument("--daemon", action="store_true", help="Run as daemon")
    parser.add_argument("--interval", type=float, help="Daemon poll interval (seconds)")
    parser.add_argument("--deadline", type=float, help="Per-call deadline (seconds)")
    parser.add_argument("--search", type=str, default="", help="Filter by address/pubkey substring")
    parser.add_argument(
        "--filter",
        type=str,
        default=StatusFilter.ALL.value,
        choices=[s.value for s in StatusFilter],
        help="Filter by node status",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_fleet_config(args.config)
    monitor = build_monitor(config)
    if args.interval is not None:
        monitor.interval_seconds = args.interval
    if args.deadline is not None:
        monitor.deadline_seconds = args.deadline

    try:
        return _run(monitor, args)
    finally:
        monitor.close()


def _run(monitor: FleetMonitor, args) -> int:
    if args.daemon:
        def _print_round(snapshot: FleetSnapshot):
            print(render_status(snapshot, args.search, args.filter), flush=True)

        monitor.subscribe(_print_round)
        try:
            monitor.run_forever()
        except KeyboardInterrupt:
            logger.info("Stopping fleet monitor")
        return 0

    snapshot = monitor.poll_once()

    if args.json:
        nodes = filter_nodes(snapshot, args.search, args.filter)
        print(json.dumps({
            "round_id": snapshot.round_id,
            "started_at": snapshot.started_at,
            "completed_at": snapshot.completed_at,
            "metrics": aggregate(snapshot).to_dict(),
            "nodes": [n.to_dict() for n in nodes],
        }, indent=2))
    else:
        print(render_status(snapshot, args.search, args.filter))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
