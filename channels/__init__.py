"""Delivery transports and their session persistence."""
from channels.base import (
    DeliveryTransport,
    ConnectionStateMachine,
    TransportError,
    NotConnectedError,
)
from channels.whatsapp_adapter import WhatsAppCloudTransport
from channels.session import SessionStore, SessionState

__all__ = [
    "DeliveryTransport", "ConnectionStateMachine", "TransportError", "NotConnectedError",
    "WhatsAppCloudTransport", "SessionStore", "SessionState",
]
