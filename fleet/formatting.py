"""Human-readable renderings of node figures for status output."""

from typing import Optional

_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


def format_bytes(num_bytes: Optional[int]) -> str:
    """1024-based size, e.g. 1536 -> '1.5 KB'."""
    if not num_bytes:
        return "0 B"
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(_SIZE_UNITS) - 1:
        value /= 1024
        i += 1
    # Drop trailing zeros: 1.50 -> 1.5, 2.00 -> 2
    return f"{round(value, 2):g} {_SIZE_UNITS[i]}"


def format_uptime(seconds: Optional[int]) -> str:
    """Coarse uptime: '3d 4h', '4h 12m' or '12m'."""
    if not seconds:
        return "N/A"
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    mins = (seconds % 3600) // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins}m"


def truncate_key(key: Optional[str]) -> str:
    """Shorten a public key to 'abcdef...wxyz'."""
    if not key:
        return "N/A"
    if len(key) < 12:
        return key
    return f"{key[:6]}...{key[-4:]}"
