"""
Transport - HTTP delivery of pRPC envelopes to a node.

The transport is the dumb pipe underneath the RPC client: it knows how to
reach a node's pRPC port (directly or through a forwarding proxy) and how
to turn the reply body into a dict. It knows nothing about envelopes,
deadlines, or retries.

Usage:
    from core.transport import HttpTransport

    transport = HttpTransport("http://{address}:4000/")
    reply = transport.send("173.212.220.65", {"jsonrpc": "2.0", ...}, timeout=8)

    # Through a forwarding proxy
    transport = HttpTransport("http://proxy.local/api/prpc/{address}")

Design:
    - One requests.Session per transport (connection reuse per node)
    - Every requests error becomes RpcTransportError
    - The optional timeout is a socket timeout so abandoned calls free
      their connection; wall-clock deadlines belong to the RPC client
"""

import logging
from typing import Any, Dict, Optional

import requests

from core.rpc import RpcTransportError

logger = logging.getLogger("transport")

DEFAULT_URL_TEMPLATE = "http://{address}:4000/"


class HttpTransport:
    """POST a JSON body to a node and return the decoded JSON reply."""

    def __init__(
        self,
        url_template: str = DEFAULT_URL_TEMPLATE,
        headers: Optional[Dict[str, str]] = None,
    ):
        if "{address}" not in url_template:
            raise ValueError(f"url_template must contain '{{address}}': {url_template}")

        self.url_template = url_template
        self._session = requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        if headers:
            self._session.headers.update(headers)

    def url_for(self, address: str) -> str:
        """Build the pRPC URL for a node."""
        return self.url_template.format(address=address)

    def send(
        self,
        address: str,
        payload: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Deliver one request body and return the parsed reply.

        Args:
            address: Node address (substituted into the URL template)
            payload: JSON-serializable request body
            timeout: Socket timeout in seconds (None = wait forever)

        Raises:
            RpcTransportError: connection failure, HTTP 4xx/5xx, or a body
                that is not JSON
        """
        url = self.url_for(address)
        method = payload.get("method", "?")

        try:
            resp = self._session.post(url, json=payload, timeout=timeout)
        except requests.RequestException as e:
            raise RpcTransportError(address, method, f"{type(e).__name__}: {e}")

        if resp.status_code >= 400:
            truncated = resp.text[:200] if resp.text else ""
            raise RpcTransportError(address, method, f"HTTP {resp.status_code}: {truncated}")

        try:
            return resp.json()
        except ValueError as e:
            raise RpcTransportError(address, method, f"Invalid JSON from {url}: {e}")

    def close(self):
        self._session.close()
