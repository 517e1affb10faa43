"""
Scripted stand-ins for the pRPC transport.

A ScriptedTransport answers each (address, method) pair from a script
instead of the network, so tests can make nodes slow, broken, or healthy
at will.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.rpc import RpcTransportError


@dataclass
class Ok:
    """Reply with a result."""
    result: Any


@dataclass
class RemoteFault:
    """Reply with a protocol-level error object."""
    code: int
    message: str


@dataclass
class Raw:
    """Reply with this exact body."""
    body: Any


@dataclass
class Fail:
    """Raise instead of replying."""
    exc: BaseException


@dataclass
class Delayed:
    """Sleep, then play the wrapped step."""
    seconds: float
    then: Any


def stats(cpu=20.0, memory=30.0, storage_used=1024 ** 3, storage_pct=10.0, uptime=3600):
    return {
        "cpu_percent": cpu,
        "memory_percent": memory,
        "storage_used": storage_used,
        "storage_percent": storage_pct,
        "uptime": uptime,
    }


def pods(*pubkeys, ip=None, gossip_port=None):
    entries = []
    for key in pubkeys:
        entry = {"pubkey": key}
        if ip is not None:
            entry["ip"] = ip
        if gossip_port is not None:
            entry["gossip_port"] = gossip_port
        entries.append(entry)
    return {"total_count": len(entries), "pods": entries}


@dataclass
class ScriptedTransport:
    """Transport that plays back scripted steps per (address, method)."""
    script: Dict[Tuple[str, str], Any] = field(default_factory=dict)
    calls: List[Tuple[str, str, Dict[str, Any], Optional[float]]] = field(default_factory=list)
    completed: List[Tuple[str, str]] = field(default_factory=list)
    closed: bool = False

    def __post_init__(self):
        self._lock = threading.Lock()

    def set(self, address: str, method: str, step: Any):
        self.script[(address, method)] = step

    def node(self, address: str, stats_step: Any, pods_step: Any):
        self.set(address, "getStats", stats_step)
        self.set(address, "getPods", pods_step)

    def send(self, address: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        method = payload["method"]
        with self._lock:
            self.calls.append((address, method, payload, timeout))
            step = self.script.get((address, method))

        try:
            return self._play(address, method, payload, step)
        finally:
            with self._lock:
                self.completed.append((address, method))

    def _play(self, address, method, payload, step):
        while isinstance(step, Delayed):
            time.sleep(step.seconds)
            step = step.then

        if step is None:
            raise RpcTransportError(address, method, "ConnectionError: connection refused")
        if isinstance(step, Fail):
            raise step.exc
        if isinstance(step, Raw):
            return step.body
        if isinstance(step, RemoteFault):
            return {
                "jsonrpc": "2.0",
                "id": payload["id"],
                "error": {"code": step.code, "message": step.message},
            }
        if isinstance(step, Ok):
            step = step.result
        return {"jsonrpc": "2.0", "id": payload["id"], "result": step}

    def close(self):
        self.closed = True
