"""Transports that carry loop prompts into agent sessions."""

from agentloops.transport.base import (
    SessionBusyError,
    SessionTransport,
    TransportError,
    TurnCompleted,
    TurnEvent,
    TurnFailed,
)

__all__ = [
    "SessionBusyError",
    "SessionTransport",
    "TransportError",
    "TurnCompleted",
    "TurnEvent",
    "TurnFailed",
]
