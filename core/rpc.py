"""
RPC Client - pRPC calls against storage nodes with per-call deadlines.

This module wraps a Transport with:
- Request framing (JSON-RPC 2.0 envelope with a unique request id)
- A wall-clock deadline per call, measured from submission
- Response unwrapping (result vs. protocol-level error)
- A standard exception hierarchy

Usage:
    from core.rpc import RpcClient, RpcError

    client = RpcClient()

    # Blocking call
    try:
        stats = client.call("173.212.220.65", "getStats", deadline=8)
    except RpcTimeout:
        # Node too slow this round
        pass
    except RpcError as e:
        logger.warning(f"{e.kind}: {e}")

    # Concurrent calls against one node
    stats_call = client.submit(address, "getStats", deadline=8)
    pods_call = client.submit(address, "getPods", deadline=8)
    stats = stats_call.result()
    pods = pods_call.result()

Design:
    - The client never retries; a missed call simply shows up in that
      round's snapshot
    - A call that misses its deadline is abandoned: its future is
      cancelled and any late reply is dropped
    - Exceptions never leak raw transport errors
"""

import itertools
import logging
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Dict, Mapping, Optional, Tuple

logger = logging.getLogger("rpc")

PROTOCOL_VERSION = "2.0"

METHOD_GET_STATS = "getStats"
METHOD_GET_PODS = "getPods"


# =============================================================================
# EXCEPTIONS
# =============================================================================

class RpcError(Exception):
    """Base error for any failed pRPC call."""

    kind = "RpcError"

    def __init__(self, address: str, method: str, message: str):
        self.address = address
        self.method = method
        self.message = message
        super().__init__(f"{method}@{address}: {message}")


class RpcTimeout(RpcError):
    """No response before the call's deadline elapsed."""

    kind = "Timeout"

    def __init__(self, address: str, method: str, deadline: float):
        self.deadline = deadline
        super().__init__(address, method, f"no response within {deadline:g}s")


class RpcTransportError(RpcError):
    """Connection or network fault below the protocol layer."""

    kind = "TransportError"


class RpcRemoteError(RpcError):
    """The node answered with a protocol-level error object."""

    kind = "RemoteError"

    def __init__(self, address: str, method: str, code: Optional[int], remote_message: str):
        self.code = code
        self.remote_message = remote_message
        super().__init__(address, method, f"remote error {code}: {remote_message}")


class RpcProtocolViolation(RpcError):
    """Response was malformed or incomplete."""

    kind = "ProtocolViolation"


# =============================================================================
# PENDING CALL
# =============================================================================

class PendingCall:
    """
    Handle for an in-flight call.

    result() waits until the reply arrives or the deadline (counted from
    submission) runs out, whichever comes first.
    """

    def __init__(
        self,
        future: Future,
        address: str,
        method: str,
        deadline: Optional[float],
        submitted_at: float,
    ):
        self._future = future
        self.address = address
        self.method = method
        self.deadline = deadline
        self.submitted_at = submitted_at
        self._expired = False

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (None = unbounded)."""
        if self.deadline is None:
            return None
        return max(0.0, self.submitted_at + self.deadline - time.monotonic())

    def done(self) -> bool:
        return self._future.done()

    def _expire(self):
        self._expired = True
        self._future.cancel()
        logger.debug(f"{self.method}@{self.address} abandoned after {self.deadline}s")
        return RpcTimeout(self.address, self.method, self.deadline)

    def result(self) -> Any:
        """
        Block for the call's result.

        A reply that landed after the deadline counts as a timeout, even
        if it is already sitting in the future when result() is called.

        Raises:
            RpcTimeout: Deadline elapsed first (the call is abandoned)
            RpcError: Any other failure of the call
        """
        if self._expired:
            raise RpcTimeout(self.address, self.method, self.deadline)

        try:
            finished_at, value, error = self._future.result(timeout=self.remaining())
        except FuturesTimeout:
            raise self._expire()
        except CancelledError:
            raise RpcTransportError(self.address, self.method, "call cancelled")

        if self.deadline is not None and finished_at > self.submitted_at + self.deadline:
            raise self._expire()
        if error is not None:
            raise error
        return value


# =============================================================================
# RPC CLIENT
# =============================================================================

class RpcClient:
    """
    pRPC client for a fleet of nodes.

    Provides:
    - Envelope framing and unwrapping
    - Per-call deadlines
    - Concurrent submission on a private thread pool
    """

    def __init__(
        self,
        transport=None,
        default_deadline: Optional[float] = 8.0,
        max_workers: int = 64,
    ):
        """
        Initialize the client.

        Args:
            transport: Object with send(address, payload, timeout) -> dict
                (default: HttpTransport with the standard pRPC URL)
            default_deadline: Deadline in seconds when a call gives none
            max_workers: Size of the call thread pool
        """
        if transport is None:
            from core.transport import HttpTransport
            transport = HttpTransport()

        self.transport = transport
        self.default_deadline = default_deadline
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="rpc",
        )
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def build_request(
        self,
        method: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Frame a request envelope."""
        return {
            "jsonrpc": PROTOCOL_VERSION,
            "id": self._next_id(),
            "method": method,
            "params": dict(params or {}),
        }

    # =========================================================================
    # PUBLIC METHODS
    # =========================================================================

    def submit(
        self,
        address: str,
        method: str,
        params: Optional[Mapping[str, Any]] = None,
        deadline: Optional[float] = None,
    ) -> PendingCall:
        """
        Start a call without waiting for it.

        Args:
            address: Node address
            method: pRPC method name
            params: Method parameters (default: empty object)
            deadline: Seconds allowed for the call (default: client default)

        Returns:
            PendingCall whose result() yields the unwrapped result
        """
        if deadline is None:
            deadline = self.default_deadline

        request = self.build_request(method, params)
        submitted_at = time.monotonic()
        future = self._executor.submit(self._execute, address, request, deadline)
        return PendingCall(future, address, method, deadline, submitted_at)

    def call(
        self,
        address: str,
        method: str,
        params: Optional[Mapping[str, Any]] = None,
        deadline: Optional[float] = None,
    ) -> Any:
        """
        Make a call and wait for its result.

        Raises:
            RpcTimeout: Deadline exceeded
            RpcTransportError: Connection/network fault
            RpcRemoteError: Node returned an error object
            RpcProtocolViolation: Malformed or incomplete response
        """
        return self.submit(address, method, params, deadline).result()

    def get_stats(self, address: str, deadline: Optional[float] = None) -> Any:
        return self.call(address, METHOD_GET_STATS, deadline=deadline)

    def get_pods(self, address: str, deadline: Optional[float] = None) -> Any:
        return self.call(address, METHOD_GET_PODS, deadline=deadline)

    def close(self):
        """Stop accepting calls and release the transport."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        close = getattr(self.transport, "close", None)
        if close:
            close()

    # =========================================================================
    # CORE REQUEST LOGIC
    # =========================================================================

    def _execute(
        self,
        address: str,
        request: Dict[str, Any],
        deadline: Optional[float],
    ) -> Tuple[float, Any, Optional[RpcError]]:
        """
        Send one request and unwrap the reply (runs on the pool).

        Returns (finished_at, result, error) instead of raising, so the
        waiting side can tell when the outcome was produced.
        """
        method = request["method"]
        try:
            reply = self.transport.send(address, request, timeout=deadline)
            result = self.unwrap(address, request, reply)
        except RpcError as e:
            return time.monotonic(), None, e
        except Exception as e:
            error = RpcTransportError(address, method, f"{type(e).__name__}: {e}")
            return time.monotonic(), None, error

        return time.monotonic(), result, None

    @staticmethod
    def unwrap(address: str, request: Dict[str, Any], reply: Any) -> Any:
        """
        Validate a reply envelope and return its result.

        An error member wins over a result member.
        """
        method = request["method"]

        if not isinstance(reply, dict):
            raise RpcProtocolViolation(
                address, method, f"expected object, got {type(reply).__name__}"
            )

        reply_id = reply.get("id")
        if reply_id is not None and reply_id != request["id"]:
            raise RpcProtocolViolation(
                address, method, f"response id {reply_id!r} != request id {request['id']!r}"
            )

        error = reply.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RpcRemoteError(
                    address, method, error.get("code"), str(error.get("message", ""))
                )
            raise RpcRemoteError(address, method, None, str(error))

        if "result" not in reply:
            raise RpcProtocolViolation(address, method, "no result in response")

        return reply["result"]
