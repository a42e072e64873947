"""Account-deletion cascade."""

from __future__ import annotations

import asyncio

import structlog

from atomchat.events.bus import AtomchatEvent, EventBus
from atomchat.store.turns import TurnStore


class AccountCleaner:
    """
    Removes everything stored for a deleted user.

    The session cascade (turns in batches, then the session row) runs
    concurrently with the leaderboard deletion. Turns always go before their
    session row so an interrupted run never strands turns under a missing
    session. Every step is idempotent; re-running after a partial failure
    finishes the job.
    """

    def __init__(self, store: TurnStore, event_bus: EventBus | None = None) -> None:
        self._store = store
        self._event_bus = event_bus
        self._logger = structlog.get_logger("atomchat.accounts")

    async def delete_account(self, user_id: str) -> int:
        """
        Delete the user's turns, session row and leaderboard row.

        Returns:
            Number of turns deleted.
        """
        if not user_id:
            raise ValueError("user_id is required")

        turns_deleted, _ = await asyncio.gather(
            self._delete_session_tree(user_id),
            self._store.delete_leaderboard_entry(user_id),
        )
        self._logger.info("account_deleted", user_id=user_id, turns_deleted=turns_deleted)
        if self._event_bus is not None:
            self._event_bus.publish(
                AtomchatEvent.ACCOUNT_DELETED,
                {"user_id": user_id, "turns_deleted": turns_deleted},
            )
        return turns_deleted

    async def _delete_session_tree(self, user_id: str) -> int:
        deleted = await self._store.delete_turns(user_id)
        await self._store.delete_session(user_id)
        return deleted
