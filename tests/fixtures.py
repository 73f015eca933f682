"""
Test fixtures for onionctl tests.

Sample control port replies and fakes shared by the test modules.
"""

from __future__ import annotations

import socket

from onionctl.control.session import ControlSession, SessionState
from onionctl.errors import OnionCtlError
from onionctl.onion.models import OnionInfo, OnionKey

# Valid v3 service ID (DuckDuckGo's onion service)
V3_SERVICE_ID = "duckduckgogg42xjoc72x3sjasowoarfbgcmvfimaftt6twagswzczad"

SAMPLE_KEY_MATERIAL = (
    "oJHVc7bHXYcUbNjaHSYh+JfDStQYnYvRhJ8QHO4UhWSJSXOhsAWyyK+Ov0kDyXcFx8bQTrbUjzxBLhS8HcDbWg=="
)

ADD_ONION_NEW_REPLY = (
    f"250-ServiceID={V3_SERVICE_ID}\r\n"
    f"250-PrivateKey=ED25519-V3:{SAMPLE_KEY_MATERIAL}\r\n"
    "250 OK\r\n"
).encode()

ADD_ONION_EXISTING_REPLY = f"250-ServiceID={V3_SERVICE_ID}\r\n250 OK\r\n".encode()

OK_REPLY = b"250 OK\r\n"

PROTOCOLINFO_NULL = (
    b"250-PROTOCOLINFO 1\r\n"
    b"250-AUTH METHODS=NULL\r\n"
    b'250-VERSION Tor="0.4.8.9"\r\n'
    b"250 OK\r\n"
)

PROTOCOLINFO_PASSWORD = (
    b"250-PROTOCOLINFO 1\r\n"
    b"250-AUTH METHODS=HASHEDPASSWORD\r\n"
    b'250-VERSION Tor="0.4.8.9"\r\n'
    b"250 OK\r\n"
)

AUTH_FAILED_REPLY = (
    b"515 Authentication failed: Password did not match HashedControlPassword value "
    b"from configuration\r\n"
)


def protocolinfo_cookie(methods: str, cookie_file: str) -> bytes:
    """PROTOCOLINFO reply advertising cookie authentication."""
    return (
        "250-PROTOCOLINFO 1\r\n"
        f'250-AUTH METHODS={methods} COOKIEFILE="{cookie_file}"\r\n'
        '250-VERSION Tor="0.4.8.9"\r\n'
        "250 OK\r\n"
    ).encode()


def session_pair(debug: bool = False) -> tuple[ControlSession, socket.socket]:
    """ControlSession wired to a socket the test plays Tor on."""
    client, server = socket.socketpair()
    return ControlSession(client, debug=debug), server


def authenticated_session() -> tuple[ControlSession, socket.socket]:
    """Session that completed NULL authentication, with its sent bytes drained."""
    session, server = session_pair()
    server.sendall(PROTOCOLINFO_NULL + OK_REPLY)
    session.authenticate()
    assert session.state is SessionState.AUTHENTICATED
    server.recv(65536)
    return session, server


def sent_lines(server: socket.socket) -> list[str]:
    """Lines the session wrote so far."""
    server.settimeout(1.0)
    return server.recv(65536).decode().split("\r\n")[:-1]


class FakeSession:
    """Stand-in for ControlSession that records what the listener asks of it."""

    def __init__(
        self,
        info: OnionInfo | None = None,
        auth_error: OnionCtlError | None = None,
        add_error: OnionCtlError | None = None,
        delete_error: OnionCtlError | None = None,
    ) -> None:
        self.info = info or OnionInfo(
            service_id=V3_SERVICE_ID,
            key_type="ED25519-V3",
            key_material=SAMPLE_KEY_MATERIAL,
        )
        self.auth_error = auth_error
        self.add_error = add_error
        self.delete_error = delete_error
        self.passwords: list[str] = []
        self.added: list[tuple[int, str, OnionKey | None]] = []
        self.deleted: list[str] = []
        self.closed = False

    def factory(self, network: str, address: str, debug: bool) -> FakeSession:
        self.network = network
        self.address = address
        self.debug = debug
        return self

    def authenticate(self, password: str = "") -> None:
        self.passwords.append(password)
        if self.auth_error is not None:
            raise self.auth_error

    def add_onion(
        self, virtual_port: int, target_address: str, key: OnionKey | None = None
    ) -> OnionInfo:
        self.added.append((virtual_port, target_address, key))
        if self.add_error is not None:
            raise self.add_error
        if key is not None:
            return OnionInfo(service_id=self.info.service_id)
        return self.info

    def delete_onion(self, service_id: str) -> None:
        self.deleted.append(service_id)
        if self.delete_error is not None:
            raise self.delete_error

    def close(self) -> None:
        self.closed = True


def free_port() -> int:
    """Pick a currently unused local TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])
