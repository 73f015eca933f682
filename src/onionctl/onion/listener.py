"""
Onion service listener.

OnionListener ties an ephemeral onion service to a local TCP listener:

    1. load the persisted key, if any
    2. connect and authenticate to the control port
    3. ADD_ONION, reusing the key or asking for a new one
    4. persist the key in use
    5. bind the local listener the service forwards to

Once all steps succeed, accept() hands out connections arriving through Tor.
Ephemeral services live as long as the control connection that created them,
so the session stays open until release().
"""

from __future__ import annotations

import socket
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from types import TracebackType
from typing import Optional

from loguru import logger

from onionctl import config
from onionctl.control.session import ControlSession
from onionctl.errors import (
    AcceptError,
    CloseError,
    InitializationError,
    LifecycleStateError,
    LifecycleStep,
    ListenerBindError,
    OnionCtlError,
    PersistenceError,
)
from onionctl.netaddr import parse_address_port
from onionctl.onion.address import ServiceAddress, is_v3_service_id
from onionctl.onion.keyfile import read_key_file, set_aside_key_file, write_key_file
from onionctl.onion.models import OnionInfo, OnionKey

# (network, address, debug) -> connected session
SessionFactory = Callable[[str, str, bool], ControlSession]


class ListenerState(Enum):
    """OnionListener lifecycle states."""

    UNINITIALIZED = auto()  # Nothing done yet
    KEY_LOADED = auto()  # Persisted key read
    AUTHENTICATED = auto()  # Control session ready
    REGISTERED = auto()  # ADD_ONION succeeded
    LISTENING = auto()  # Local listener bound, accept() allowed
    CLOSED = auto()  # Terminal


_TRANSITIONS: dict[ListenerState, frozenset[ListenerState]] = {
    ListenerState.UNINITIALIZED: frozenset(
        {ListenerState.KEY_LOADED, ListenerState.AUTHENTICATED, ListenerState.CLOSED}
    ),
    ListenerState.KEY_LOADED: frozenset({ListenerState.AUTHENTICATED, ListenerState.CLOSED}),
    ListenerState.AUTHENTICATED: frozenset({ListenerState.REGISTERED, ListenerState.CLOSED}),
    ListenerState.REGISTERED: frozenset({ListenerState.LISTENING, ListenerState.CLOSED}),
    ListenerState.LISTENING: frozenset({ListenerState.CLOSED}),
    ListenerState.CLOSED: frozenset(),
}


@dataclass(frozen=True)
class LifecycleOptions:
    """Configuration of an OnionListener."""

    virtual_port: int  # Port the onion service advertises
    local_address: str  # host:port of the local listener
    control_network: str = config.DEFAULT_CONTROL_NETWORK
    control_address: str = config.DEFAULT_CONTROL_ADDR
    control_password: str = ""  # Empty for cookie or no auth
    key_file: Optional[Path] = None  # Persist the service key here
    require_key: bool = False  # Fail if key_file holds no key
    debug: bool = False  # Log control protocol traffic

    def __post_init__(self) -> None:
        if not 1 <= self.virtual_port <= 65535:
            raise ValueError(f"Virtual port out of range (1-65535): {self.virtual_port}")
        parse_address_port(self.local_address)
        if self.control_network not in config.CONTROL_NETWORKS:
            raise ValueError(f"Unsupported control network: {self.control_network}")
        if not self.control_address:
            raise ValueError("Tor control port address not specified")
        if self.require_key and self.key_file is None:
            raise ValueError("require_key needs a key_file")

    @classmethod
    def from_env(
        cls,
        virtual_port: int,
        local_address: str,
        key_file: Optional[Path] = None,
        debug: bool = False,
    ) -> LifecycleOptions:
        """Build options with control port settings taken from the environment."""
        return cls(
            virtual_port=virtual_port,
            local_address=local_address,
            control_network=config.get_control_network(),
            control_address=config.get_control_address(),
            control_password=config.get_control_password(),
            key_file=key_file,
            debug=debug,
        )


class OnionListener:
    """
    Listener for connections arriving at an ephemeral onion service.

    Example:
        options = LifecycleOptions(virtual_port=80, local_address="127.0.0.1:8080")
        with OnionListener(options) as listener:
            print(listener.address())
            while True:
                conn = listener.accept()
                threading.Thread(target=handle, args=(conn,), daemon=True).start()
    """

    def __init__(
        self,
        options: LifecycleOptions,
        session_factory: SessionFactory = ControlSession.dial,
    ) -> None:
        """
        Create an uninitialized listener. No network activity happens here.

        Args:
            options: Listener configuration
            session_factory: Opens the control session; replaceable for tests
        """
        self._options = options
        self._session_factory = session_factory
        self._state = ListenerState.UNINITIALIZED
        self._session: Optional[ControlSession] = None
        self._onion_info: Optional[OnionInfo] = None
        self._listener: Optional[socket.socket] = None
        self._lock = threading.Lock()
        self._unreadable_key_file = False

    @property
    def options(self) -> LifecycleOptions:
        """Listener configuration."""
        return self._options

    @property
    def state(self) -> ListenerState:
        """Current lifecycle state."""
        return self._state

    @property
    def onion_info(self) -> Optional[OnionInfo]:
        """Registered service, or None outside REGISTERED/LISTENING."""
        return self._onion_info

    def _transition(self, new_state: ListenerState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise LifecycleStateError(
                f"Invalid transition {self._state.name} -> {new_state.name}"
            )
        logger.debug(f"Onion listener {self._state.name} -> {new_state.name}")
        self._state = new_state

    def initialize(self) -> None:
        """
        Bring the onion service up and start listening.

        Raises:
            LifecycleStateError: If called more than once
            InitializationError: If a step fails; the listener is then CLOSED,
                the service is rolled back and all resources are released
        """
        if self._state is not ListenerState.UNINITIALIZED:
            raise LifecycleStateError(f"Cannot initialize a listener in state {self._state.name}")

        options = self._options
        step = LifecycleStep.LOAD_KEY
        try:
            key = self._load_key()
            if key is not None:
                self._transition(ListenerState.KEY_LOADED)

            step = LifecycleStep.AUTHENTICATE
            self._session = self._session_factory(
                options.control_network, options.control_address, options.debug
            )
            self._session.authenticate(options.control_password)
            self._transition(ListenerState.AUTHENTICATED)

            step = LifecycleStep.REGISTER
            info = self._session.add_onion(options.virtual_port, options.local_address, key)
            self._onion_info = info
            self._transition(ListenerState.REGISTERED)
            if not is_v3_service_id(info.service_id):
                logger.warning(f"Tor returned a service ID that is not v3: {info.service_id}")
            logger.info(f"Registered onion service {info.service_id}")

            step = LifecycleStep.PERSIST_KEY
            if options.key_file is not None:
                key_in_use = info.key if key is None else key
                if key_in_use is None:
                    raise PersistenceError("ADD_ONION returned no key to persist")
                if self._unreadable_key_file:
                    aside = set_aside_key_file(options.key_file)
                    logger.warning(f"Moved unreadable key file to {aside}")
                write_key_file(options.key_file, key_in_use)
                logger.debug(f"Saved onion key to {options.key_file}")

            step = LifecycleStep.BIND
            self._listener = self._bind()
            self._transition(ListenerState.LISTENING)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._abort()
            raise InitializationError(step, e) from e

        logger.info(f"Onion service listening on {self.address()} -> {options.local_address}")

    def _load_key(self) -> Optional[OnionKey]:
        key_file = self._options.key_file
        if key_file is None:
            return None
        try:
            key = read_key_file(key_file)
        except PersistenceError as e:
            if self._options.require_key:
                raise
            logger.warning(f"Ignoring key file: {e}; a new key will be generated")
            self._unreadable_key_file = True
            return None
        if key is None:
            if self._options.require_key:
                raise PersistenceError(f"Key file {key_file} does not exist")
            logger.debug(f"No key file at {key_file}, a new key will be generated")
        else:
            logger.debug(f"Loaded {key.key_type} key from {key_file}")
        return key

    def _bind(self) -> socket.socket:
        host, port = parse_address_port(self._options.local_address)
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        try:
            return socket.create_server((host, port), family=family)
        except OSError as e:
            raise ListenerBindError(
                f"Cannot listen on {self._options.local_address}: {e}"
            ) from e

    def _abort(self) -> None:
        """Roll back a partial initialization and release everything."""
        info = self._onion_info
        if info is not None and self._session is not None:
            try:
                self._session.delete_onion(info.service_id)
                logger.info(f"Rolled back onion service {info.service_id}")
            except OnionCtlError as e:
                logger.warning(f"Failed to roll back onion service {info.service_id}: {e}")
        self._onion_info = None
        self._transition(ListenerState.CLOSED)
        self.release()

    def accept(self) -> socket.socket:
        """
        Wait for the next connection to the onion service.

        Returns:
            Connected socket

        Raises:
            LifecycleStateError: If the service is not listening
            AcceptError: If the local listener fails
        """
        listener = self._listener
        if self._state is not ListenerState.LISTENING or listener is None:
            raise LifecycleStateError(
                f"Onion service not ready (state {self._state.name})"
            )
        try:
            conn, _ = listener.accept()
        except OSError as e:
            raise AcceptError(f"Local listener accept failed: {e}") from e
        return conn

    def address(self) -> ServiceAddress:
        """
        Get the onion address clients connect to.

        Raises:
            LifecycleStateError: If the service is not listening
        """
        if self._state is not ListenerState.LISTENING or self._onion_info is None:
            raise LifecycleStateError(
                f"Onion service not ready (state {self._state.name})"
            )
        return ServiceAddress(self._onion_info.service_id, self._options.virtual_port)

    def close(self) -> None:
        """
        Remove the onion service with DEL_ONION.

        Only the registration is removed; the local listener and the control
        connection stay open until release(). Calling close() again does nothing.

        Raises:
            CloseError: If Tor refuses or the connection fails
        """
        with self._lock:
            if self._state is ListenerState.CLOSED:
                return
            info = self._onion_info
            self._onion_info = None
            self._transition(ListenerState.CLOSED)

        if info is None or self._session is None:
            return

        try:
            self._session.delete_onion(info.service_id)
        except OnionCtlError as e:
            raise CloseError(f"DEL_ONION {info.service_id} failed: {e}") from e
        logger.info(f"Removed onion service {info.service_id}")

    def release(self) -> None:
        """Close the local listener and the control connection."""
        listener, self._listener = self._listener, None
        session, self._session = self._session, None
        if listener is not None:
            listener.close()
        if session is not None:
            session.close()

    def __enter__(self) -> OnionListener:
        """Context manager entry - initialize if needed."""
        if self._state is ListenerState.UNINITIALIZED:
            self.initialize()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context manager exit - remove the service, then release resources."""
        try:
            self.close()
        finally:
            self.release()
