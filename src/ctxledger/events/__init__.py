"""ctxledger event bus."""

from ctxledger.events.bus import EventBus, Handler, LedgerEvent
from ctxledger.events.payloads import (
    DissolveCompletedPayload,
    DissolveFailedPayload,
    TransplantCompletedPayload,
    TransplantFailedPayload,
)

__all__ = [
    "DissolveCompletedPayload",
    "DissolveFailedPayload",
    "EventBus",
    "Handler",
    "LedgerEvent",
    "TransplantCompletedPayload",
    "TransplantFailedPayload",
]
