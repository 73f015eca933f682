"""Tests for the Tor SOCKS dialer."""

import socket
from unittest.mock import MagicMock, patch

import httpx
import pytest
import socks

from onionctl.dialer import TorDialer
from onionctl.errors import DialError


class TestDial:
    """Tests for TorDialer.dial."""

    def test_routes_through_proxy(self) -> None:
        """Test the socket is configured for SOCKS5 with remote DNS."""
        mock_sock = MagicMock()
        with patch("onionctl.dialer.socks.socksocket", return_value=mock_sock) as factory:
            sock = TorDialer("127.0.0.1:9150", username="iso", password="lation").dial(
                "tcp", "example.onion:80"
            )

        assert sock is mock_sock
        factory.assert_called_once_with(socket.AF_INET, socket.SOCK_STREAM)
        mock_sock.set_proxy.assert_called_once_with(
            socks.SOCKS5,
            "127.0.0.1",
            9150,
            rdns=True,
            username="iso",
            password="lation",
        )
        mock_sock.connect.assert_called_once_with(("example.onion", 80))

    def test_tcp6_proxy(self) -> None:
        """Test tcp6 reaches the proxy over IPv6."""
        with patch("onionctl.dialer.socks.socksocket") as factory:
            TorDialer("[::1]:9050").dial("tcp6", "example.com:443")
        factory.assert_called_once_with(socket.AF_INET6, socket.SOCK_STREAM)

    def test_tcp_follows_proxy_family(self) -> None:
        """Test plain tcp picks the family of the proxy address."""
        with patch("onionctl.dialer.socks.socksocket") as factory:
            TorDialer("[::1]:9050").dial("tcp", "example.com:443")
        factory.assert_called_once_with(socket.AF_INET6, socket.SOCK_STREAM)

    def test_unresolvable_proxy(self) -> None:
        """Test a proxy host that does not resolve is a dial error."""
        with patch(
            "onionctl.dialer.socket.getaddrinfo", side_effect=socket.gaierror("no such host")
        ):
            with patch("onionctl.dialer.socks.socksocket") as factory:
                with pytest.raises(DialError):
                    TorDialer("tor.invalid:9050").dial("tcp", "example.onion:80")
        factory.assert_not_called()

    def test_proxy_error(self) -> None:
        """Test SOCKS failures are wrapped and the socket closed."""
        mock_sock = MagicMock()
        mock_sock.connect.side_effect = socks.GeneralProxyError("Socket error")
        with patch("onionctl.dialer.socks.socksocket", return_value=mock_sock):
            with pytest.raises(DialError) as exc_info:
                TorDialer("127.0.0.1:9050").dial("tcp", "example.onion:80")

        assert isinstance(exc_info.value.__cause__, socks.ProxyError)
        mock_sock.close.assert_called_once()

    def test_unsupported_network(self) -> None:
        """Test only TCP networks are dialable."""
        with pytest.raises(DialError):
            TorDialer("127.0.0.1:9050").dial("udp", "example.onion:53")

    def test_invalid_destination(self) -> None:
        """Test destinations without a port are rejected."""
        with pytest.raises(DialError):
            TorDialer("127.0.0.1:9050").dial("tcp", "example.onion")

    def test_default_proxy_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the SOCKS address defaults to ONIONCTL_SOCKS_ADDR."""
        monkeypatch.setenv("ONIONCTL_SOCKS_ADDR", "10.0.0.1:9999")
        dialer = TorDialer()
        assert (dialer.proxy_host, dialer.proxy_port) == ("10.0.0.1", 9999)


class TestHttpClient:
    """Tests for TorDialer.http_client."""

    def test_proxy_url(self) -> None:
        """Test the proxy URL carries host, port and credentials."""
        assert TorDialer("127.0.0.1:9050").proxy_url == "socks5://127.0.0.1:9050"
        assert TorDialer("[::1]:9050").proxy_url == "socks5://[::1]:9050"
        assert (
            TorDialer("127.0.0.1:9050", username="u", password="p").proxy_url
            == "socks5://u:p@127.0.0.1:9050"
        )

    def test_client(self) -> None:
        """Test an httpx client is built with the SOCKS proxy."""
        with TorDialer("127.0.0.1:9050").http_client(timeout=5.0) as client:
            assert isinstance(client, httpx.Client)
            assert client.timeout.connect == 5.0
