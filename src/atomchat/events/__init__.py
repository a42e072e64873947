"""atomchat event system."""

from atomchat.events.bus import AtomchatEvent, EventBus, Handler
from atomchat.events.payloads import (
    AccountDeletedPayload,
    PointsAwardedPayload,
    SessionUpdatedPayload,
    TurnCompletedPayload,
    TurnCreatedPayload,
    TurnFailedPayload,
)

__all__ = [
    "AtomchatEvent",
    "EventBus",
    "Handler",
    "TurnCreatedPayload",
    "TurnCompletedPayload",
    "TurnFailedPayload",
    "SessionUpdatedPayload",
    "PointsAwardedPayload",
    "AccountDeletedPayload",
]
