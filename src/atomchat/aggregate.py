"""Session rollup bookkeeping."""

from __future__ import annotations

import structlog

from atomchat.events.bus import AtomchatEvent, EventBus
from atomchat.store.turns import TurnStore


class SessionAggregateUpdater:
    """
    Maintains per-session rollup metadata independently of the turn records.

    The counter is cosmetic bookkeeping rather than an authoritative tally: a
    failed increment is logged and reported, never raised, and never rolled
    back against the turns it describes.
    """

    def __init__(self, store: TurnStore, event_bus: EventBus | None = None) -> None:
        self._store = store
        self._event_bus = event_bus
        self._logger = structlog.get_logger("atomchat.aggregate")

    async def apply_delta(self, session_id: str, turn_delta: int) -> bool:
        """
        Stamp ``last_interaction`` and atomically add ``turn_delta`` to the turn count.

        Returns:
            True if the rollup was written, False if the store call failed.
        """
        try:
            await self._store.increment_session(session_id, turn_delta)
        except Exception as exc:
            self._logger.warning(
                "session_rollup_failed",
                session_id=session_id,
                delta=turn_delta,
                error=str(exc),
            )
            return False

        if self._event_bus is not None:
            self._event_bus.publish(
                AtomchatEvent.SESSION_UPDATED, {"session_id": session_id, "delta": turn_delta}
            )
        return True
