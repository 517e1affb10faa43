"""YAML fleet configuration with environment variable support."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Tuple

import yaml

logger = logging.getLogger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "fleet.yaml"


def expand_env_vars(value: Any) -> Any:
    """
    Recursively expand environment variables in strings.

    Supports:
    - ${VAR} - required variable
    - ${VAR:-default} - variable with default
    """
    if isinstance(value, str):
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replacer(match):
            var_name = match.group(1)
            default = match.group(2)
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            # Return original if no value and no default
            return match.group(0)

        return re.sub(pattern, replacer, value)

    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [expand_env_vars(v) for v in value]

    return value


def load_yaml(path: Path | str) -> dict:
    """Load a YAML file with environment variable expansion."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return expand_env_vars(data)


@dataclass(frozen=True)
class FleetConfig:
    """Everything the poller needs to know about the fleet."""
    addresses: Tuple[str, ...]
    url_template: str = "http://{address}:4000/"
    deadline_seconds: float = 8.0
    max_workers: int = 64
    interval_seconds: float = 30.0
    cpu_threshold: float = 90.0
    memory_threshold: float = 95.0
    headers: dict = field(default_factory=dict)


def validate_addresses(addresses: List[Any]) -> Tuple[str, ...]:
    """Addresses must be non-empty strings and unique (they key the fleet)."""
    seen = set()
    result = []
    for addr in addresses:
        if not isinstance(addr, str) or not addr.strip():
            raise ValueError(f"Invalid node address: {addr!r}")
        addr = addr.strip()
        if addr in seen:
            raise ValueError(f"Duplicate node address: {addr}")
        seen.add(addr)
        result.append(addr)
    return tuple(result)


def config_from_dict(data: dict) -> FleetConfig:
    """Build a FleetConfig from a parsed YAML document."""
    rpc = data.get("rpc") or {}
    poll = data.get("poll") or {}
    thresholds = data.get("thresholds") or {}

    addresses = data.get("addresses") or []
    if isinstance(addresses, str):
        addresses = [a for a in addresses.split(",") if a.strip()]

    return FleetConfig(
        addresses=validate_addresses(addresses),
        url_template=rpc.get("url_template", FleetConfig.url_template),
        deadline_seconds=float(rpc.get("deadline_seconds", FleetConfig.deadline_seconds)),
        max_workers=int(rpc.get("max_workers", FleetConfig.max_workers)),
        interval_seconds=float(poll.get("interval_seconds", FleetConfig.interval_seconds)),
        cpu_threshold=float(thresholds.get("cpu_percent", FleetConfig.cpu_threshold)),
        memory_threshold=float(thresholds.get("memory_percent", FleetConfig.memory_threshold)),
        headers=dict(rpc.get("headers") or {}),
    )


def load_fleet_config(path: Optional[Path | str] = None) -> FleetConfig:
    """
    Load the fleet configuration.

    Resolution order for the file: explicit path, $FLEET_CONFIG, then
    config/fleet.yaml. Reads env vars for overrides:
        FLEET_ADDRESSES          (comma-separated)
        FLEET_RPC_URL_TEMPLATE
        FLEET_RPC_DEADLINE_S
        FLEET_POLL_INTERVAL_S

    Raises:
        FileNotFoundError: Config file missing
        ValueError: Address list invalid
    """
    if path is None:
        path = os.environ.get("FLEET_CONFIG") or DEFAULT_CONFIG_PATH

    data = load_yaml(path)

    env_addresses = os.getenv("FLEET_ADDRESSES")
    if env_addresses:
        data["addresses"] = env_addresses

    rpc = dict(data.get("rpc") or {})
    if os.getenv("FLEET_RPC_URL_TEMPLATE"):
        rpc["url_template"] = os.environ["FLEET_RPC_URL_TEMPLATE"]
    if os.getenv("FLEET_RPC_DEADLINE_S"):
        rpc["deadline_seconds"] = os.environ["FLEET_RPC_DEADLINE_S"]
    data["rpc"] = rpc

    poll = dict(data.get("poll") or {})
    if os.getenv("FLEET_POLL_INTERVAL_S"):
        poll["interval_seconds"] = os.environ["FLEET_POLL_INTERVAL_S"]
    data["poll"] = poll

    config = config_from_dict(data)
    logger.info(f"Loaded {len(config.addresses)} node addresses from {path}")
    return config
