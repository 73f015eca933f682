"""
Tor control protocol client.

The session itself lives in onionctl.control.session; this package only
re-exports the reply types so onion modules can use them without importing
the session.
"""

from onionctl.control.response import Response, read_response

__all__ = [
    "Response",
    "read_response",
]
