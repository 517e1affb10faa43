"""
Core plumbing shared by the fleet modules.

- rpc.py: pRPC client, deadlines, error taxonomy
- transport.py: HTTP transport to a node's pRPC port
- config.py: fleet.yaml loading
"""

__version__ = "0.1.0"
