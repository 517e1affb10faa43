"""
Shared pytest fixtures for CI-safe testing.

No fixture touches the network: RPC traffic goes through ScriptedTransport.
"""

import sys
from pathlib import Path

# Add project root (and this directory, for the fakes module) to sys.path
project_root = Path(__file__).parent.parent
for path in (project_root, Path(__file__).parent):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

import shutil
import tempfile
from typing import Generator

import pytest

from core.rpc import RpcClient
from fakes import ScriptedTransport
from fleet.poller import FleetPoller, NodePoller


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Provides a temporary directory for tests.

    Automatically cleaned up after test completes.
    """
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def transport() -> ScriptedTransport:
    """Empty script: every call fails with a connection error until set."""
    return ScriptedTransport()


@pytest.fixture
def rpc_client(transport: ScriptedTransport) -> Generator[RpcClient, None, None]:
    client = RpcClient(transport, default_deadline=1.0, max_workers=32)
    yield client
    client.close()


@pytest.fixture
def node_poller(rpc_client: RpcClient) -> NodePoller:
    return NodePoller(rpc_client)


@pytest.fixture
def fleet_poller(node_poller: NodePoller) -> FleetPoller:
    return FleetPoller(node_poller, max_workers=16, grace_seconds=1.0)


def pytest_configure(config):
    """Add custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
