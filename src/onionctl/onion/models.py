"""
Data models for onion services.

This module contains dataclasses for registered onion services and the key
material that backs them.
"""

from dataclasses import dataclass, field
from typing import Optional

from onionctl.control.response import Response


@dataclass(frozen=True)
class OnionKey:
    """Private key of an onion service as Tor exchanges it."""

    key_type: str  # e.g. "ED25519-V3"
    key_material: str  # base64 blob

    def __str__(self) -> str:
        return f"{self.key_type}:{self.key_material}"


@dataclass(frozen=True)
class OnionInfo:
    """Result of a successful ADD_ONION."""

    service_id: str  # Address label without ".onion"
    key_type: Optional[str] = None  # Only set when Tor generated a new key
    key_material: Optional[str] = None
    response: Optional[Response] = field(default=None, repr=False, compare=False)

    @property
    def key(self) -> Optional[OnionKey]:
        """Generated key, if the reply carried one."""
        if self.key_type is None or self.key_material is None:
            return None
        return OnionKey(self.key_type, self.key_material)
