"""Typed payload definitions for each AtomchatEvent.

Usage example::

    from atomchat.events.bus import AtomchatEvent, EventBus
    from atomchat.events.payloads import TurnFailedPayload

    def on_failure(event: AtomchatEvent, payload: TurnFailedPayload) -> None:
        alerting.notify(payload["session_id"], payload["error"])

    bus.subscribe(AtomchatEvent.TURN_FAILED, on_failure)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import Literal, TypedDict

# ── Turn lifecycle ────────────────────────────────────────────────────────────


class TurnCreatedPayload(TypedDict):
    """Payload for :attr:`AtomchatEvent.TURN_CREATED`."""

    turn_id: str
    session_id: str
    role: Literal["user", "assistant"]


class TurnCompletedPayload(TypedDict):
    """Payload for :attr:`AtomchatEvent.TURN_COMPLETED`."""

    turn_id: str
    session_id: str


class TurnFailedPayload(TypedDict):
    """Payload for :attr:`AtomchatEvent.TURN_FAILED`."""

    turn_id: str
    session_id: str
    error: str
    """Internal error description. Not the apology stored on the turn."""


# ── Aggregates ────────────────────────────────────────────────────────────────


class SessionUpdatedPayload(TypedDict):
    """Payload for :attr:`AtomchatEvent.SESSION_UPDATED`."""

    session_id: str
    delta: int


class PointsAwardedPayload(TypedDict):
    """Payload for :attr:`AtomchatEvent.POINTS_AWARDED`."""

    user_id: str
    points_earned: int
    total_points: int


class AccountDeletedPayload(TypedDict):
    """Payload for :attr:`AtomchatEvent.ACCOUNT_DELETED`."""

    user_id: str
    turns_deleted: int
