"""
Environment configuration for onionctl.

Each setting has a built-in default that an ONIONCTL_* environment variable
can override. Invalid values are reported on stderr and the default is used.
"""

import os
import sys

from onionctl.netaddr import parse_address_port

CONTROL_NETWORKS = ("tcp", "tcp4", "tcp6", "unix")

DEFAULT_CONTROL_NETWORK = "tcp"
DEFAULT_CONTROL_ADDR = "127.0.0.1:9051"
DEFAULT_SOCKS_ADDR = "127.0.0.1:9050"


def _warn(name: str, value: str) -> None:
    print(f"Warning: Invalid {name} value: {value}", file=sys.stderr)


def get_control_network() -> str:
    """Get control network from ONIONCTL_CONTROL_NETWORK or use default."""
    value = os.environ.get("ONIONCTL_CONTROL_NETWORK")
    if value:
        if value in CONTROL_NETWORKS:
            return value
        _warn("ONIONCTL_CONTROL_NETWORK", value)
    return DEFAULT_CONTROL_NETWORK


def get_control_address() -> str:
    """Get control address from ONIONCTL_CONTROL_ADDR or use default."""
    return os.environ.get("ONIONCTL_CONTROL_ADDR") or DEFAULT_CONTROL_ADDR


def get_control_password() -> str:
    """Get control password from ONIONCTL_CONTROL_PASSWORD (empty if unset)."""
    return os.environ.get("ONIONCTL_CONTROL_PASSWORD", "")


def get_socks_address() -> str:
    """Get Tor SOCKS address from ONIONCTL_SOCKS_ADDR or use default."""
    value = os.environ.get("ONIONCTL_SOCKS_ADDR")
    if value:
        try:
            parse_address_port(value)
            return value
        except ValueError:
            _warn("ONIONCTL_SOCKS_ADDR", value)
    return DEFAULT_SOCKS_ADDR
