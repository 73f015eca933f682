"""
Exception hierarchy for onionctl.

Every error raised by the library derives from OnionCtlError so callers can
catch the whole family in one place.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from onionctl.control.response import Response


class OnionCtlError(Exception):
    """Base class for all onionctl errors."""


class TransportError(OnionCtlError):
    """Control connection I/O failed. The session is unusable afterwards."""


class AuthenticationError(OnionCtlError):
    """Tor rejected our credentials or offered no usable method."""


class ReplyError(OnionCtlError):
    """Tor answered a command with a non-2xx status."""

    def __init__(self, command: str, response: Response) -> None:
        super().__init__(f"{command} failed: {response.status_code} {response.reply}")
        self.command = command
        self.response = response


class ProtocolParseError(OnionCtlError):
    """A reply was malformed or lacked a required field."""


class PersistenceError(OnionCtlError):
    """Reading or writing the onion key file failed."""


class ListenerBindError(OnionCtlError):
    """The local listener could not be bound."""


class LifecycleStateError(OnionCtlError):
    """An operation was invoked outside the state it is valid in."""


class AcceptError(OnionCtlError):
    """The local listener failed while accepting a connection."""


class CloseError(OnionCtlError):
    """Removing the onion service failed."""


class DialError(OnionCtlError):
    """Connecting through the Tor SOCKS port failed."""


class LifecycleStep(Enum):
    """Steps of OnionListener.initialize(), in order."""

    LOAD_KEY = "load key"
    AUTHENTICATE = "authenticate"
    REGISTER = "register service"
    PERSIST_KEY = "persist key"
    BIND = "bind listener"


class InitializationError(OnionCtlError):
    """One step of onion service initialization failed."""

    def __init__(self, step: LifecycleStep, cause: Exception) -> None:
        super().__init__(f"onion service initialization failed at '{step.value}': {cause}")
        self.step = step
        self.cause = cause
