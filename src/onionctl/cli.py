"""
CLI interface for onionctl.

Provides command-line tools for running and reaching onion services.
"""

import argparse
import socket
import sys
import threading
from collections.abc import Callable
from pathlib import Path

import httpx
from loguru import logger

from onionctl import __version__, config
from onionctl.dialer import TorDialer
from onionctl.errors import OnionCtlError
from onionctl.onion.listener import LifecycleOptions, OnionListener

DEFAULT_HTTP_TIMEOUT = 30.0


def configure_logging(verbosity: int) -> None:
    """Send loguru output to stderr at a level chosen by -v flags."""
    levels = {0: "WARNING", 1: "INFO"}
    logger.remove()
    logger.add(sys.stderr, level=levels.get(verbosity, "DEBUG"))


def cmd_version(args: argparse.Namespace) -> int:  # pylint: disable=unused-argument
    """Print the onionctl version."""
    print(__version__)
    return 0


def _echo(conn: socket.socket) -> None:
    with conn:
        try:
            while True:
                data = conn.recv(4096)
                if not data:
                    break
                conn.sendall(data)
        except OSError as e:
            logger.debug(f"Echo connection ended: {e}")


def build_options(args: argparse.Namespace) -> LifecycleOptions:
    """Build listener options from CLI arguments on top of the environment."""
    return LifecycleOptions(
        virtual_port=args.port,
        local_address=args.local,
        control_network=args.control_network or config.get_control_network(),
        control_address=args.control_addr or config.get_control_address(),
        control_password=(
            args.password if args.password is not None else config.get_control_password()
        ),
        key_file=Path(args.key_file) if args.key_file else None,
        debug=args.verbose >= 2,
    )


def cmd_echo(args: argparse.Namespace) -> int:
    """Run an echo server behind an ephemeral onion service."""
    try:
        options = build_options(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    listener = OnionListener(options)
    try:
        with listener:
            print(f"onion echo server: listening to {listener.address()}")
            while True:
                conn = listener.accept()
                # Each connection is served on its own thread
                threading.Thread(target=_echo, args=(conn,), daemon=True).start()
    except OnionCtlError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_fetch(args: argparse.Namespace) -> int:
    """Fetch a URL through Tor and print the response body."""
    try:
        dialer = TorDialer(args.socks_addr)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        with dialer.http_client(timeout=args.timeout, follow_redirects=True) as client:
            response = client.get(args.url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(response.text)
    return 0


def main() -> int:
    """Main entry point for the onionctl CLI."""
    parser = argparse.ArgumentParser(
        prog="onionctl",
        description="Tor onion service control tool",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for progress, -vv for control protocol traffic)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="", title="commands")

    # version command
    subparsers.add_parser("version", help="Display the onionctl version")

    # echo command
    echo_parser = subparsers.add_parser(
        "echo", help="Serve an echo server as an ephemeral onion service"
    )
    echo_parser.add_argument(
        "--port", type=int, default=80, help="Onion service virtual port (default: 80)"
    )
    echo_parser.add_argument(
        "--local",
        metavar="ADDR:PORT",
        default="127.0.0.1:8080",
        help="Local listen address (default: 127.0.0.1:8080)",
    )
    echo_parser.add_argument(
        "--key-file", metavar="FILE", help="Persist the onion key here to keep the address"
    )
    echo_parser.add_argument(
        "--control-network",
        choices=config.CONTROL_NETWORKS,
        help="Control port network (default: $ONIONCTL_CONTROL_NETWORK or tcp)",
    )
    echo_parser.add_argument(
        "--control-addr",
        metavar="ADDR",
        help="Control port address or socket path (default: $ONIONCTL_CONTROL_ADDR)",
    )
    echo_parser.add_argument(
        "--password", help="Control port password (default: $ONIONCTL_CONTROL_PASSWORD)"
    )

    # fetch command
    fetch_parser = subparsers.add_parser("fetch", help="Fetch a URL through Tor (HTTP GET)")
    fetch_parser.add_argument("url", metavar="URL", help="URL to fetch (clearnet or .onion)")
    fetch_parser.add_argument(
        "--socks-addr", metavar="ADDR:PORT", help="Tor SOCKS port (default: $ONIONCTL_SOCKS_ADDR)"
    )
    fetch_parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_HTTP_TIMEOUT,
        help=f"HTTP timeout in seconds (default: {DEFAULT_HTTP_TIMEOUT:g})",
    )

    args = parser.parse_args()
    configure_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        return 0

    commands: dict[str, Callable[[argparse.Namespace], int]] = {
        "version": cmd_version,
        "echo": cmd_echo,
        "fetch": cmd_fetch,
    }

    try:
        return commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
