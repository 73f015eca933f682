"""Helpers for host:port strings."""


def parse_address_port(addr_port: str) -> tuple[str, int]:
    """
    Parse address:port string, handling IPv6 bracket notation.

    Examples:
        127.0.0.1:9051 -> ("127.0.0.1", 9051)
        [::1]:8080 -> ("::1", 8080)
        localhost:80 -> ("localhost", 80)

    Args:
        addr_port: Address and port in format "host:port" or "[ipv6]:port"

    Returns:
        Tuple of (address, port)

    Raises:
        ValueError: If the format is invalid or port is out of range
    """
    if addr_port.startswith("["):
        bracket_end = addr_port.find("]")
        if bracket_end == -1:
            raise ValueError(f"Invalid IPv6 address format (missing ]): {addr_port}")
        if bracket_end + 1 >= len(addr_port) or addr_port[bracket_end + 1] != ":":
            raise ValueError(f"Invalid format (expected ]:port): {addr_port}")
        address = addr_port[1:bracket_end]
        port_str = addr_port[bracket_end + 2 :]
    else:
        address, sep, port_str = addr_port.rpartition(":")
        if not sep or not address:
            raise ValueError(f"Invalid address:port format: {addr_port}")

    try:
        port = int(port_str)
    except ValueError as e:
        raise ValueError(f"Invalid port number: {port_str}") from e

    if port < 1 or port > 65535:
        raise ValueError(f"Port out of range (1-65535): {port}")

    return address, port
