"""
ADD_ONION and DEL_ONION commands.

Builds the command lines and parses the ADD_ONION reply:

    250-ServiceID=<id>
    250-PrivateKey=<keyType>:<keyMaterial>
    250 OK

PrivateKey is only present when a new key was requested.

See: https://spec.torproject.org/control-spec/commands.html#add_onion
"""

from typing import Optional

from onionctl.control.response import Response
from onionctl.errors import ProtocolParseError
from onionctl.onion.models import OnionInfo

# Key spec asking Tor to generate the best available key type
NEW_KEY_SPEC = "NEW:BEST"

SERVICE_ID_MARKER = "ServiceID="
PRIVATE_KEY_MARKER = "PrivateKey="

_LINE_BREAKS = "\r\n"


def build_add_onion(
    virtual_port: int,
    target_address: str,
    key_type: Optional[str] = None,
    key_material: Optional[str] = None,
    request_new_key: bool = True,
) -> str:
    """
    Build an ADD_ONION command line.

    Args:
        virtual_port: Port the onion service advertises
        target_address: Local host:port the port maps to
        key_type: Key algorithm of an existing key (e.g. "ED25519-V3")
        key_material: Base64 key blob of an existing key
        request_new_key: If True, ask Tor to generate a key and ignore key_type/key_material

    Returns:
        Command line without line terminator

    Raises:
        ValueError: If an existing key is requested but not fully supplied
    """
    if request_new_key:
        key_spec = NEW_KEY_SPEC
    else:
        if not key_type or not key_material:
            raise ValueError("key_type and key_material are required for an existing key")
        key_spec = f"{key_type}:{key_material}"

    return f"ADD_ONION {key_spec} Port={virtual_port},{target_address}"


def build_delete_onion(service_id: str) -> str:
    """Build a DEL_ONION command line for a registered service."""
    if not service_id or any(c.isspace() for c in service_id):
        raise ValueError(f"Invalid service ID: {service_id!r}")
    return f"DEL_ONION {service_id}"


def _value_start(body: str, marker: str) -> int:
    """Index just past the first occurrence of marker."""
    index = body.find(marker)
    if index == -1:
        raise ProtocolParseError(f"ADD_ONION reply has no {marker} field")
    return index + len(marker)


def _token_end(body: str, start: int, stops: str) -> int:
    """Index of the first stop character at or after start, or len(body)."""
    end = start
    while end < len(body) and body[end] not in stops:
        end += 1
    return end


def parse_add_onion_reply(response: Response, requested_new_key: bool) -> OnionInfo:
    """
    Parse an ADD_ONION reply.

    Args:
        response: Reply returned by the control session
        requested_new_key: Whether the command asked Tor to generate a key

    Returns:
        OnionInfo for the registered service

    Raises:
        ProtocolParseError: If a required field is missing or empty
    """
    body = response.body

    start = _value_start(body, SERVICE_ID_MARKER)
    end = _token_end(body, start, " \t" + _LINE_BREAKS)
    service_id = body[start:end]
    if not service_id:
        raise ProtocolParseError("ADD_ONION reply has an empty ServiceID")

    if not requested_new_key:
        return OnionInfo(service_id=service_id, response=response)

    start = _value_start(body, PRIVATE_KEY_MARKER)
    colon = _token_end(body, start, ":" + _LINE_BREAKS)
    if colon == len(body) or body[colon] != ":":
        raise ProtocolParseError("ADD_ONION PrivateKey field has no key type separator")
    key_type = body[start:colon]

    end = _token_end(body, colon + 1, _LINE_BREAKS)
    key_material = body[colon + 1 : end]
    if not key_type or not key_material:
        raise ProtocolParseError("ADD_ONION PrivateKey field is incomplete")

    return OnionInfo(
        service_id=service_id,
        key_type=key_type,
        key_material=key_material,
        response=response,
    )
