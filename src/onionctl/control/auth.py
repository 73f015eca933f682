"""Authentication helpers for the control port.

Covers PROTOCOLINFO parsing and the SAFECOOKIE challenge/response, which
proves knowledge of the cookie file without sending it in the clear.

See: https://spec.torproject.org/control-spec/commands.html#authchallenge
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from onionctl.control.response import Response
from onionctl.errors import AuthenticationError, ProtocolParseError

SERVER_TO_CONTROLLER_KEY = b"Tor safe cookie authentication server-to-controller hash"
CONTROLLER_TO_SERVER_KEY = b"Tor safe cookie authentication controller-to-server hash"

COOKIE_LEN = 32
NONCE_LEN = 32

# Preference order when no password is configured
COOKIE_METHODS = ("SAFECOOKIE", "COOKIE")

_QUOTED_RE = re.compile(r'"((?:[^"\\]|\\.)*)"')
_CHALLENGE_RE = re.compile(r"SERVERHASH=([0-9A-Fa-f]{64}) SERVERNONCE=([0-9A-Fa-f]{64})")


@dataclass(frozen=True)
class ProtocolInfo:
    """Parsed PROTOCOLINFO reply."""

    auth_methods: tuple[str, ...]
    cookie_file: str | None = None
    tor_version: str | None = None


def _unquote(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def parse_protocol_info(response: Response) -> ProtocolInfo:
    """
    Parse the reply to ``PROTOCOLINFO 1``.

    Args:
        response: Successful PROTOCOLINFO reply

    Returns:
        ProtocolInfo with the advertised authentication methods

    Raises:
        ProtocolParseError: If the AUTH line is missing
    """
    methods: tuple[str, ...] | None = None
    cookie_file: str | None = None
    tor_version: str | None = None

    for line in response.data:
        if line.startswith("AUTH "):
            for token in line[len("AUTH ") :].split(" "):
                if token.startswith("METHODS="):
                    methods = tuple(m for m in token[len("METHODS=") :].split(",") if m)
            cookie_at = line.find("COOKIEFILE=")
            if cookie_at != -1:
                match = _QUOTED_RE.match(line, cookie_at + len("COOKIEFILE="))
                if match:
                    cookie_file = _unquote(match.group(1))
        elif line.startswith("VERSION "):
            match = _QUOTED_RE.search(line)
            if match:
                tor_version = _unquote(match.group(1))

    if methods is None:
        raise ProtocolParseError("PROTOCOLINFO reply has no AUTH METHODS line")

    return ProtocolInfo(auth_methods=methods, cookie_file=cookie_file, tor_version=tor_version)


def quote_password(password: str) -> str:
    """Quote a password as a control protocol QuotedString."""
    escaped = password.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def read_cookie(cookie_file: str | None) -> bytes:
    """
    Read the authentication cookie advertised by PROTOCOLINFO.

    Raises:
        AuthenticationError: If the file is missing, unreadable or the wrong size
    """
    if not cookie_file:
        raise AuthenticationError("Tor did not advertise a cookie file")
    try:
        cookie = Path(cookie_file).read_bytes()
    except OSError as e:
        raise AuthenticationError(f"Cannot read cookie file {cookie_file}: {e}") from e
    if len(cookie) != COOKIE_LEN:
        raise AuthenticationError(
            f"Cookie file {cookie_file} has {len(cookie)} bytes, expected {COOKIE_LEN}"
        )
    return cookie


def _hmac_sha256(key: bytes, message: bytes) -> hmac.HMAC:
    h = hmac.HMAC(key, hashes.SHA256())
    h.update(message)
    return h


def safecookie_response(
    cookie: bytes, client_nonce: bytes, challenge: Response
) -> str:
    """
    Verify an AUTHCHALLENGE reply and compute our AUTHENTICATE argument.

    Args:
        cookie: 32-byte authentication cookie
        client_nonce: Nonce we sent in AUTHCHALLENGE
        challenge: Tor's AUTHCHALLENGE reply

    Returns:
        Hex-encoded client hash

    Raises:
        ProtocolParseError: If the challenge reply is malformed
        AuthenticationError: If Tor's server hash does not verify
    """
    match = _CHALLENGE_RE.search(challenge.reply)
    if match is None:
        raise ProtocolParseError(f"Malformed AUTHCHALLENGE reply: {challenge.reply!r}")

    server_hash = bytes.fromhex(match.group(1))
    server_nonce = bytes.fromhex(match.group(2))
    message = cookie + client_nonce + server_nonce

    try:
        _hmac_sha256(SERVER_TO_CONTROLLER_KEY, message).verify(server_hash)
    except InvalidSignature as e:
        raise AuthenticationError("Tor's SAFECOOKIE server hash did not verify") from e

    return _hmac_sha256(CONTROLLER_TO_SERVER_KEY, message).finalize().hex().upper()
