"""
Onion service support.

Command codec, data models, key persistence and addresses. The lifecycle
manager is in onionctl.onion.listener.
"""

from onionctl.onion.address import ServiceAddress, is_v3_service_id
from onionctl.onion.codec import (
    NEW_KEY_SPEC,
    build_add_onion,
    build_delete_onion,
    parse_add_onion_reply,
)
from onionctl.onion.keyfile import read_key_file, set_aside_key_file, write_key_file
from onionctl.onion.models import OnionInfo, OnionKey

__all__ = [
    # Address
    "ServiceAddress",
    "is_v3_service_id",
    # Codec
    "NEW_KEY_SPEC",
    "build_add_onion",
    "build_delete_onion",
    "parse_add_onion_reply",
    # Key file
    "read_key_file",
    "set_aside_key_file",
    "write_key_file",
    # Models
    "OnionInfo",
    "OnionKey",
]
