"""
Tor control session.

A ControlSession carries one request/response exchange at a time over a
persistent control port connection. Tor answers commands strictly in order,
so requests are serialized with a lock.

See: https://spec.torproject.org/control-spec/index.html
"""

from __future__ import annotations

import secrets
import socket
import threading
from enum import Enum, auto
from types import TracebackType
from typing import Optional

from loguru import logger

from onionctl.control.auth import (
    COOKIE_METHODS,
    NONCE_LEN,
    ProtocolInfo,
    parse_protocol_info,
    quote_password,
    read_cookie,
    safecookie_response,
)
from onionctl.control.response import Response, read_response
from onionctl.errors import (
    AuthenticationError,
    LifecycleStateError,
    OnionCtlError,
    ProtocolParseError,
    TransportError,
)
from onionctl.netaddr import parse_address_port
from onionctl.onion.codec import build_add_onion, build_delete_onion, parse_add_onion_reply
from onionctl.onion.models import OnionInfo, OnionKey

_TCP_FAMILIES = {
    "tcp": socket.AF_UNSPEC,
    "tcp4": socket.AF_INET,
    "tcp6": socket.AF_INET6,
}


class SessionState(Enum):
    """Control session states."""

    CONNECTED = auto()  # Connected, not yet authenticated
    AUTHENTICATED = auto()  # Commands accepted
    CLOSED = auto()  # Terminal


def _connect_tcp(family: int, address: str) -> socket.socket:
    host, port = parse_address_port(address)
    last_error: Optional[OSError] = None
    for af, socktype, proto, _, sockaddr in socket.getaddrinfo(
        host, port, family, socket.SOCK_STREAM
    ):
        sock = socket.socket(af, socktype, proto)
        try:
            sock.connect(sockaddr)
            return sock
        except OSError as e:
            sock.close()
            last_error = e
    raise last_error or OSError(f"No addresses found for {address}")


def _connect_unix(address: str) -> socket.socket:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(address)
    except OSError:
        sock.close()
        raise
    return sock


class ControlSession:
    """
    Synchronous client for the Tor control protocol.

    Example:
        with ControlSession.dial("tcp", "127.0.0.1:9051") as session:
            session.authenticate("password")
            info = session.add_onion(80, "127.0.0.1:8080")
    """

    def __init__(self, sock: socket.socket, debug: bool = False) -> None:
        """
        Wrap an already connected control socket.

        Args:
            sock: Connected stream socket to the control port
            debug: If True, log every line sent and received
        """
        self._sock = sock
        self._reader = sock.makefile("rb")
        self._lock = threading.Lock()
        self.debug = debug
        self.state = SessionState.CONNECTED
        self.protocol_info: Optional[ProtocolInfo] = None

    @classmethod
    def dial(cls, network: str, address: str, debug: bool = False) -> ControlSession:
        """
        Connect to a Tor control port.

        Args:
            network: "tcp", "tcp4", "tcp6" or "unix"
            address: host:port for TCP, socket path for unix
            debug: If True, log protocol traffic

        Returns:
            Connected, unauthenticated session

        Raises:
            TransportError: If the address is malformed or the connection cannot be established
            ValueError: If network is not supported
        """
        if network != "unix" and network not in _TCP_FAMILIES:
            raise ValueError(f"Unsupported control network: {network}")

        try:
            if network == "unix":
                sock = _connect_unix(address)
            else:
                sock = _connect_tcp(_TCP_FAMILIES[network], address)
        except (OSError, ValueError) as e:
            raise TransportError(f"Failed to connect to Tor control port {address}: {e}") from e

        logger.debug(f"Connected to Tor control port {network}:{address}")
        return cls(sock, debug=debug)

    def _trace(self, direction: str, line: str) -> None:
        if not self.debug:
            return
        if line.startswith("AUTHENTICATE ") or line.startswith("AUTHCHALLENGE "):
            line = line.split(" ", 1)[0] + " [redacted]"
        logger.debug(f"control {direction} {line}")

    def _fail(self) -> None:
        self.state = SessionState.CLOSED
        self._release()

    def request(self, command_line: str) -> Response:
        """
        Send one command and wait for its complete reply.

        Args:
            command_line: Command without line terminator

        Returns:
            Parsed reply, whatever its status code

        Raises:
            ValueError: If the command contains a line break
            LifecycleStateError: If the session is closed
            TransportError: If the connection fails; the session is closed
            ProtocolParseError: If the reply is malformed; the session is closed
        """
        if "\r" in command_line or "\n" in command_line:
            raise ValueError("Control commands must be a single line")

        with self._lock:
            if self.state is SessionState.CLOSED:
                raise LifecycleStateError("Control session is closed")

            self._trace(">>", command_line)
            try:
                self._sock.sendall(f"{command_line}\r\n".encode("utf-8"))
                response = read_response(self._reader)
            except OSError as e:
                self._fail()
                raise TransportError(f"Control connection failed: {e}") from e
            except (TransportError, ProtocolParseError):
                self._fail()
                raise

            for line in response.raw_lines:
                self._trace("<<", line)
            return response

    def authenticate(self, password: str = "") -> None:
        """
        Authenticate the session.

        Asks Tor which methods it accepts with PROTOCOLINFO. A non-empty password
        uses HASHEDPASSWORD; otherwise SAFECOOKIE, COOKIE and NULL are tried in
        that order of preference. Tor drops the connection after a failed
        attempt, so the session is closed on failure.

        Args:
            password: Control port password, empty for cookie or no auth

        Raises:
            LifecycleStateError: If the session is not freshly connected
            AuthenticationError: If no method works or Tor rejects the credentials
            TransportError: If the connection fails
        """
        if self.state is not SessionState.CONNECTED:
            raise LifecycleStateError(f"Cannot authenticate a session in state {self.state.name}")

        try:
            command = self._authenticate_command(password)
            response = self.request(command)
        except TransportError:
            raise
        except AuthenticationError:
            self._fail()
            raise
        except OnionCtlError as e:
            self._fail()
            raise AuthenticationError(f"Authentication handshake failed: {e}") from e

        if not response.is_ok:
            self._fail()
            raise AuthenticationError(
                f"Tor rejected authentication: {response.status_code} {response.reply}"
            )

        self.state = SessionState.AUTHENTICATED
        logger.info("Authenticated with Tor control port")

    def _authenticate_command(self, password: str) -> str:
        response = self.request("PROTOCOLINFO 1")
        response.raise_for_status("PROTOCOLINFO")
        info = parse_protocol_info(response)
        self.protocol_info = info
        methods = info.auth_methods
        logger.debug(f"Tor {info.tor_version} offers auth methods: {', '.join(methods)}")

        if password:
            if "HASHEDPASSWORD" not in methods:
                raise AuthenticationError("Password given but Tor does not accept HASHEDPASSWORD")
            return f"AUTHENTICATE {quote_password(password)}"
        for method in COOKIE_METHODS:
            if method not in methods:
                continue
            if method == "SAFECOOKIE":
                return f"AUTHENTICATE {self._safecookie(info.cookie_file)}"
            return f"AUTHENTICATE {read_cookie(info.cookie_file).hex().upper()}"
        if "NULL" in methods:
            return "AUTHENTICATE"
        if "HASHEDPASSWORD" in methods:
            raise AuthenticationError("Tor requires a control password")
        raise AuthenticationError(f"No supported authentication method in: {', '.join(methods)}")

    def _safecookie(self, cookie_file: Optional[str]) -> str:
        cookie = read_cookie(cookie_file)
        client_nonce = secrets.token_bytes(NONCE_LEN)
        response = self.request(f"AUTHCHALLENGE SAFECOOKIE {client_nonce.hex().upper()}")
        response.raise_for_status("AUTHCHALLENGE")
        return safecookie_response(cookie, client_nonce, response)

    def _require_authenticated(self, command: str) -> None:
        if self.state is not SessionState.AUTHENTICATED:
            raise LifecycleStateError(f"{command} requires an authenticated session")

    def add_onion(
        self, virtual_port: int, target_address: str, key: Optional[OnionKey] = None
    ) -> OnionInfo:
        """
        Register an ephemeral onion service.

        Args:
            virtual_port: Port the service advertises
            target_address: Local host:port Tor forwards connections to
            key: Existing key to reuse, or None to have Tor generate one

        Returns:
            OnionInfo; carries the generated key when key was None

        Raises:
            ReplyError: If Tor refuses the command
            ProtocolParseError: If the reply lacks the expected fields
        """
        self._require_authenticated("ADD_ONION")
        if key is None:
            command = build_add_onion(virtual_port, target_address)
        else:
            command = build_add_onion(
                virtual_port,
                target_address,
                key.key_type,
                key.key_material,
                request_new_key=False,
            )
        response = self.request(command)
        response.raise_for_status("ADD_ONION")
        return parse_add_onion_reply(response, requested_new_key=key is None)

    def delete_onion(self, service_id: str) -> None:
        """
        Remove an onion service registered on this connection.

        Raises:
            ReplyError: If Tor refuses the command
        """
        self._require_authenticated("DEL_ONION")
        response = self.request(build_delete_onion(service_id))
        response.raise_for_status("DEL_ONION")

    def _release(self) -> None:
        self._reader.close()
        self._sock.close()

    def close(self) -> None:
        """Close the control connection. Safe to call more than once."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self._release()
        logger.debug("Closed Tor control connection")

    def __enter__(self) -> ControlSession:
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context manager exit - close connection."""
        self.close()
