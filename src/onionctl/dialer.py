"""
Outbound connections through Tor.

TorDialer opens TCP streams through Tor's SOCKS5 port. Hostnames are resolved
by Tor, so .onion destinations work as well as clearnet ones.
"""

import socket
from typing import Any, Optional

import httpx
import socks

from onionctl import config
from onionctl.errors import DialError
from onionctl.netaddr import parse_address_port

_FAMILIES = {
    "tcp": socket.AF_UNSPEC,
    "tcp4": socket.AF_INET,
    "tcp6": socket.AF_INET6,
}


class TorDialer:
    """Dial TCP destinations through a Tor SOCKS5 proxy."""

    def __init__(
        self,
        proxy_address: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> None:
        """
        Initialize the dialer.

        Args:
            proxy_address: host:port of Tor's SOCKS port (ONIONCTL_SOCKS_ADDR if None)
            username: SOCKS username; Tor uses it for stream isolation
            password: SOCKS password
        """
        self.proxy_address = proxy_address or config.get_socks_address()
        self.proxy_host, self.proxy_port = parse_address_port(self.proxy_address)
        self.username = username
        self.password = password

    def dial(self, network: str, address: str) -> socket.socket:
        """
        Open a stream to address through Tor.

        Args:
            network: "tcp", "tcp4" or "tcp6"; selects the family used to reach the proxy
            address: Destination host:port, e.g. "example.onion:80"

        Returns:
            Connected socket

        Raises:
            DialError: If the proxy or the destination cannot be reached
        """
        if network not in _FAMILIES:
            raise DialError(f"Unsupported network for Tor dialing: {network}")
        try:
            host, port = parse_address_port(address)
        except ValueError as e:
            raise DialError(f"Invalid destination {address}: {e}") from e

        family = self._proxy_family(_FAMILIES[network])
        sock = socks.socksocket(family, socket.SOCK_STREAM)
        sock.set_proxy(
            socks.SOCKS5,
            self.proxy_host,
            self.proxy_port,
            rdns=True,
            username=self.username,
            password=self.password,
        )
        try:
            sock.connect((host, port))
        except (socks.ProxyError, OSError) as e:
            sock.close()
            raise DialError(
                f"Failed to dial {address} through Tor SOCKS port {self.proxy_address}: {e}"
            ) from e
        return sock

    def _proxy_family(self, family: int) -> int:
        if family != socket.AF_UNSPEC:
            return family
        try:
            infos = socket.getaddrinfo(
                self.proxy_host, self.proxy_port, socket.AF_UNSPEC, socket.SOCK_STREAM
            )
        except OSError as e:
            raise DialError(f"Cannot resolve Tor SOCKS port {self.proxy_address}: {e}") from e
        return infos[0][0]

    @property
    def proxy_url(self) -> str:
        """SOCKS5 proxy URL for HTTP clients."""
        credentials = ""
        if self.username:
            credentials = f"{self.username}:{self.password or ''}@"
        host = f"[{self.proxy_host}]" if ":" in self.proxy_host else self.proxy_host
        return f"socks5://{credentials}{host}:{self.proxy_port}"

    def http_client(self, **kwargs: Any) -> httpx.Client:
        """
        Create an httpx client whose requests go through Tor.

        Args:
            **kwargs: Passed on to httpx.Client

        Returns:
            httpx.Client using this dialer's SOCKS proxy
        """
        return httpx.Client(proxy=self.proxy_url, **kwargs)
