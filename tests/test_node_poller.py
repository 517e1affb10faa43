"""
Tests for NodePoller and the classification rules.

Tests cover:
- Every (metrics, membership) success/failure combination
- Degraded thresholds (strictly greater than)
- Concurrency of the two calls
- Malformed results -> ProtocolViolation
- poll() never raises
"""

import time

import pytest

from core.rpc import RpcRemoteError, RpcTimeout, RpcTransportError
from fakes import Delayed, Fail, Ok, Raw, RemoteFault, pods, stats
from fleet.poller import CallOutcome, NodePoller, classify
from fleet.types import MembershipInfo, NodeMetrics, NodeStatus

ADDR = "10.0.0.1"
STARTED = "2026-01-01T00:00:00"


def metrics_ok(cpu=20.0, memory=30.0):
    return CallOutcome(value=NodeMetrics.from_result(stats(cpu=cpu, memory=memory)))


def membership_ok(pubkey="abc123"):
    return CallOutcome(value=MembershipInfo.from_result(pods(pubkey)))


def failed(method="getStats"):
    return CallOutcome.failure(RpcTimeout(ADDR, method, 1.0))


# =============================================================================
# CLASSIFICATION
# =============================================================================

class TestClassify:

    def test_both_ok_online(self):
        snap = classify(ADDR, metrics_ok(), membership_ok(), STARTED)
        assert snap.status == NodeStatus.ONLINE
        assert snap.metrics.cpu_percent == 20.0
        assert snap.pubkey == "abc123"
        assert snap.observed_at == STARTED
        assert snap.error is None

    def test_both_failed_offline(self):
        metrics = CallOutcome.failure(RpcTimeout(ADDR, "getStats", 1.0))
        membership = CallOutcome.failure(RpcTransportError(ADDR, "getPods", "refused"))

        snap = classify(ADDR, metrics, membership, STARTED)

        assert snap.status == NodeStatus.OFFLINE
        assert snap.metrics is None
        assert snap.membership is None
        assert snap.observed_at is None
        # Metrics failure preferred
        assert snap.error_kind == "Timeout"
        assert "getStats" in snap.error

    def test_metrics_failed_membership_ok_is_offline_with_identity(self):
        snap = classify(ADDR, failed(), membership_ok(), STARTED)

        assert snap.status == NodeStatus.OFFLINE
        assert snap.metrics is None
        assert snap.pubkey == "abc123"
        assert snap.observed_at == STARTED
        assert snap.error_kind == "Timeout"

    def test_metrics_ok_membership_failed(self):
        snap = classify(ADDR, metrics_ok(), failed("getPods"), STARTED)

        assert snap.status == NodeStatus.ONLINE
        assert snap.membership is None
        assert snap.observed_at == STARTED
        assert "getPods" in snap.error

    @pytest.mark.parametrize("cpu,memory,expected", [
        (95.0, 40.0, NodeStatus.DEGRADED),
        (40.0, 96.0, NodeStatus.DEGRADED),
        (90.0, 95.0, NodeStatus.ONLINE),
        (90.1, 10.0, NodeStatus.DEGRADED),
        (0.0, 0.0, NodeStatus.ONLINE),
    ])
    def test_thresholds(self, cpu, memory, expected):
        snap = classify(ADDR, metrics_ok(cpu, memory), membership_ok(), STARTED)
        assert snap.status == expected

    def test_degraded_without_membership(self):
        snap = classify(ADDR, metrics_ok(cpu=99.0), failed("getPods"), STARTED)
        assert snap.status == NodeStatus.DEGRADED

    def test_custom_thresholds(self):
        snap = classify(
            ADDR, metrics_ok(cpu=60.0), membership_ok(), STARTED,
            cpu_threshold=50.0,
        )
        assert snap.status == NodeStatus.DEGRADED

    def test_deterministic(self):
        combos = [
            (metrics_ok(), membership_ok()),
            (metrics_ok(cpu=95), failed("getPods")),
            (failed(), membership_ok()),
            (failed(), failed("getPods")),
        ]
        for metrics, membership in combos:
            first = classify(ADDR, metrics, membership, STARTED)
            for _ in range(5):
                assert classify(ADDR, metrics, membership, STARTED) == first


# =============================================================================
# POLLING
# =============================================================================

class TestPoll:

    def test_healthy_node(self, transport, node_poller):
        transport.node(ADDR, Ok(stats(cpu=20, memory=30)), Ok(pods("abc123", ip="1.2.3.4", gossip_port=9001)))

        snap = node_poller.poll(ADDR)

        assert snap.status == NodeStatus.ONLINE
        assert snap.address == ADDR
        assert snap.membership.ip == "1.2.3.4"
        assert snap.membership.gossip_port == 9001
        assert snap.membership.pod_count == 1
        assert snap.observed_at is not None

    def test_first_pod_is_identity(self, transport, node_poller):
        transport.node(ADDR, Ok(stats()), Ok(pods("first", "second", "third")))
        snap = node_poller.poll(ADDR)
        assert snap.pubkey == "first"
        assert snap.membership.pod_count == 3

    def test_empty_pod_list(self, transport, node_poller):
        transport.node(ADDR, Ok(stats()), Ok({"total_count": 0, "pods": []}))
        snap = node_poller.poll(ADDR)
        assert snap.status == NodeStatus.ONLINE
        assert snap.membership is not None
        assert snap.pubkey is None

    def test_unreachable_node(self, node_poller):
        # Empty script: connection refused for both calls
        snap = node_poller.poll(ADDR)
        assert snap.status == NodeStatus.OFFLINE
        assert snap.error_kind == "TransportError"
        assert snap.observed_at is None

    def test_both_calls_time_out(self, transport, node_poller):
        transport.node(ADDR, Delayed(1.0, Ok(stats())), Delayed(1.0, Ok(pods("x"))))

        start = time.monotonic()
        snap = node_poller.poll(ADDR, deadline=0.1)

        assert time.monotonic() - start < 0.6
        assert snap.status == NodeStatus.OFFLINE
        assert snap.metrics is None
        assert snap.membership is None
        assert snap.error_kind == "Timeout"

    def test_calls_run_concurrently(self, transport, node_poller):
        transport.node(ADDR, Delayed(0.3, Ok(stats())), Delayed(0.3, Ok(pods("k"))))

        start = time.monotonic()
        snap = node_poller.poll(ADDR, deadline=2.0)

        assert time.monotonic() - start < 0.55
        assert snap.status == NodeStatus.ONLINE

    def test_one_failure_does_not_cancel_other(self, transport, node_poller):
        transport.node(ADDR, RemoteFault(-32000, "stats unavailable"), Delayed(0.2, Ok(pods("k"))))

        snap = node_poller.poll(ADDR, deadline=2.0)

        assert snap.status == NodeStatus.OFFLINE
        assert snap.pubkey == "k"
        assert snap.error_kind == "RemoteError"

    @pytest.mark.parametrize("bad_result", [
        None,
        [],
        {"cpu_percent": 10},
        {"cpu_percent": "high", "memory_percent": 1, "storage_used": 1, "storage_percent": 1, "uptime": 1},
        {"cpu_percent": 1, "memory_percent": 1, "storage_used": -5, "storage_percent": 1, "uptime": 1},
    ])
    def test_malformed_stats_is_protocol_violation(self, transport, node_poller, bad_result):
        transport.node(ADDR, Ok(bad_result), Ok(pods("k")))

        snap = node_poller.poll(ADDR)

        assert snap.status == NodeStatus.OFFLINE
        assert snap.error_kind == "ProtocolViolation"
        assert snap.pubkey == "k"

    def test_malformed_pods(self, transport, node_poller):
        transport.node(ADDR, Ok(stats()), Ok({"total_count": 1, "pods": "nope"}))
        snap = node_poller.poll(ADDR)
        assert snap.status == NodeStatus.ONLINE
        assert snap.membership is None
        assert snap.error_kind == "ProtocolViolation"

    def test_missing_result_member(self, transport, node_poller):
        transport.node(ADDR, Raw({"jsonrpc": "2.0"}), Raw({"jsonrpc": "2.0"}))
        snap = node_poller.poll(ADDR)
        assert snap.status == NodeStatus.OFFLINE
        assert snap.error_kind == "ProtocolViolation"

    def test_transport_bug_does_not_escape(self, transport, node_poller):
        transport.node(ADDR, Fail(KeyError("boom")), Fail(ZeroDivisionError()))
        snap = node_poller.poll(ADDR)
        assert snap.status == NodeStatus.OFFLINE
        assert snap.error_kind == "TransportError"

    def test_closed_client_yields_offline(self, transport, rpc_client):
        poller = NodePoller(rpc_client)
        rpc_client.close()

        snap = poller.poll(ADDR)

        assert snap.status == NodeStatus.OFFLINE
        assert snap.error_kind == "InternalError"


class TestCallOutcome:

    def test_ok(self):
        assert CallOutcome(value=1).ok
        assert not CallOutcome.failure(RpcRemoteError(ADDR, "getStats", 1, "x")).ok
