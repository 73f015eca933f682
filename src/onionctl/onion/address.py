"""
Onion service addresses.

A v3 service ID is base32(PUBKEY | CHECKSUM | VERSION) where
CHECKSUM = SHA3-256(".onion checksum" | PUBKEY | VERSION)[:2] and VERSION = 3.

See: https://spec.torproject.org/rend-spec/encoding-onion-addresses.html
"""

import base64
import binascii
import hashlib
from dataclasses import dataclass

ONION_SUFFIX = ".onion"
NETWORK = "onion-service"

V3_SERVICE_ID_LEN = 56
V3_VERSION = 3
_CHECKSUM_PREFIX = b".onion checksum"


@dataclass(frozen=True)
class ServiceAddress:
    """Externally reachable address of a registered onion service."""

    service_id: str
    virtual_port: int

    @property
    def network(self) -> str:
        """Network tag of the address."""
        return NETWORK

    @property
    def hostname(self) -> str:
        """Service ID with the .onion suffix."""
        return f"{self.service_id}{ONION_SUFFIX}"

    def __str__(self) -> str:
        return f"{self.hostname}:{self.virtual_port}"


def is_v3_service_id(service_id: str) -> bool:
    """
    Check that a service ID is a well-formed v3 onion address label.

    Args:
        service_id: Address label without ".onion"

    Returns:
        True if length, version byte and checksum are all valid
    """
    if len(service_id) != V3_SERVICE_ID_LEN:
        return False
    try:
        decoded = base64.b32decode(service_id.upper())
    except binascii.Error:
        return False

    pubkey, checksum, version = decoded[:32], decoded[32:34], decoded[34]
    if version != V3_VERSION:
        return False

    expected = hashlib.sha3_256(_CHECKSUM_PREFIX + pubkey + bytes([version])).digest()[:2]
    return checksum == expected
