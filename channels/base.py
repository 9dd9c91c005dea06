"""
Delivery Transport — base infrastructure for outbound messaging channels.

Provides:
- TransportError: delivery rejected or timed out, message kept verbatim
- ConnectionStateMachine: disconnected → connecting → connected, driven by
  transport notifications and read as a single current state
- DeliveryTransport: abstract base every channel implements
"""
from __future__ import annotations

import abc
import structlog
from datetime import datetime
from typing import Any, Callable, Optional

from models.schemas import MediaPayload, TransportState, utcnow

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class TransportError(Exception):
    """Base exception for all delivery operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class NotConnectedError(TransportError):
    def __init__(self, channel: str = ""):
        super().__init__(f"{channel or 'Transport'} is not connected", channel, retryable=True)


# ══════════════════════════════════════════════════════════════
#  CONNECTION STATE MACHINE
# ══════════════════════════════════════════════════════════════

class ConnectionStateMachine:
    """
    Tracks the transport connection.

    connect_requested: disconnected → connecting
    opened:            connecting → connected
    closed:            any → disconnected

    Notifications that do not apply to the current state are ignored.
    """

    _TRANSITIONS: dict[str, tuple[tuple[TransportState, ...], TransportState]] = {
        "connect_requested": ((TransportState.DISCONNECTED,), TransportState.CONNECTING),
        "opened": ((TransportState.CONNECTING,), TransportState.CONNECTED),
        "closed": (
            (TransportState.DISCONNECTED, TransportState.CONNECTING, TransportState.CONNECTED),
            TransportState.DISCONNECTED,
        ),
    }

    def __init__(self, on_change: Optional[Callable[[TransportState, TransportState], Any]] = None):
        self._state = TransportState.DISCONNECTED
        self._changed_at: datetime = utcnow()
        self._on_change = on_change
        self.last_error: str = ""

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == TransportState.CONNECTED

    @property
    def changed_at(self) -> datetime:
        return self._changed_at

    def set_listener(self, on_change: Optional[Callable[[TransportState, TransportState], Any]]):
        self._on_change = on_change

    def notify(self, event: str, error: str = "") -> bool:
        """Apply a transport notification. Returns True if the state changed."""
        if event not in self._TRANSITIONS:
            raise ValueError(f"Unknown transport event: {event}")
        sources, target = self._TRANSITIONS[event]
        if error:
            self.last_error = error
        if self._state not in sources or self._state == target:
            logger.debug("transport_event_ignored", transport_event=event, state=self._state.value)
            return False
        previous = self._state
        self._state = target
        self._changed_at = utcnow()
        logger.info("transport_state_changed", old=previous.value, new=target.value)
        if self._on_change:
            try:
                self._on_change(previous, target)
            except Exception as e:
                logger.warning("transport_listener_failed", error=str(e))
        return True


# ══════════════════════════════════════════════════════════════
#  DELIVERY TRANSPORT — Abstract Base
# ══════════════════════════════════════════════════════════════

class DeliveryTransport(abc.ABC):
    """
    Base class for all delivery transports.

    Subclasses implement the connection handshake and the two send hooks;
    both sends return on success and raise TransportError on failure.
    """

    channel: str = ""

    def __init__(self):
        self.connection = ConnectionStateMachine()
        self._initialized = False

    @property
    def state(self) -> TransportState:
        return self.connection.state

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    @abc.abstractmethod
    async def initialize(self, config: Any, credentials: Optional[dict[str, Any]] = None) -> None:
        ...

    @abc.abstractmethod
    async def _open(self) -> None:
        """Perform the handshake; raise TransportError if it fails."""
        ...

    @abc.abstractmethod
    async def send_text(self, recipient: str, text: str) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    async def send_media(
        self, recipient: str, media: MediaPayload, caption: Optional[str] = None,
    ) -> dict[str, Any]:
        ...

    async def connect(self) -> bool:
        self.connection.notify("connect_requested")
        try:
            await self._open()
        except TransportError as e:
            self.connection.notify("closed", error=str(e))
            logger.error("transport_connect_failed", channel=self.channel, error=str(e))
            return False
        self.connection.notify("opened")
        return True

    async def disconnect(self) -> None:
        self.connection.notify("closed")

    async def reconnect(self) -> bool:
        await self.disconnect()
        return await self.connect()

    async def shutdown(self) -> None:
        await self.disconnect()

    def _require_connected(self) -> None:
        if not self.is_connected:
            raise NotConnectedError(self.channel)
