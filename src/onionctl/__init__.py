"""
onionctl - Tor control port client for ephemeral onion services.

onionctl talks to a running Tor daemon over its control port, registers
ephemeral onion services with ADD_ONION and exposes them as a plain
listener that hands out accepted sockets.
"""

__version__ = "0.1.0"
