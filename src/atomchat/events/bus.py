"""In-process pub/sub event bus for turn, session and account events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["AtomchatEvent", dict[str, Any]], None | Awaitable[None]]


class AtomchatEvent(StrEnum):
    """All event types published by atomchat components.

    Typed payloads for each event live in :mod:`atomchat.events.payloads`.

    ``TURN_CREATED``
        ``turn_id``, ``session_id``, ``role``. Published for the user turn and
        for the assistant placeholder.

    ``TURN_COMPLETED``
        ``turn_id``, ``session_id``. The placeholder resolved to ``completed``.

    ``TURN_FAILED``
        ``turn_id``, ``session_id``, ``error``. The placeholder resolved to
        ``error``. ``error`` is the internal description, never sent to callers.

    ``SESSION_UPDATED``
        ``session_id``, ``delta``. The rollup counter was incremented.

    ``POINTS_AWARDED``
        ``user_id``, ``points_earned``, ``total_points``.

    ``ACCOUNT_DELETED``
        ``user_id``, ``turns_deleted``.
    """

    TURN_CREATED = "turn.created"
    TURN_COMPLETED = "turn.completed"
    TURN_FAILED = "turn.failed"

    SESSION_UPDATED = "session.updated"

    POINTS_AWARDED = "leaderboard.points_awarded"

    ACCOUNT_DELETED = "account.deleted"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled on the running loop (fire-and-forget).
    - Handler exceptions are logged and never reach the publisher.

    Example::

        bus = EventBus()
        bus.subscribe(AtomchatEvent.TURN_FAILED, lambda e, p: print(p["turn_id"]))
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[AtomchatEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._logger = logger or structlog.get_logger("atomchat.events")

    def subscribe(self, event: AtomchatEvent, handler: Handler) -> None:
        """Register a handler for one event type. May be sync or async."""
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for every event type."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: AtomchatEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: AtomchatEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Args:
            event: The event type to publish.
            payload: Event-specific data dictionary.
        """
        for handler in [*self._handlers.get(event, []), *self._global_handlers]:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    try:
                        asyncio.get_running_loop().create_task(result)  # noqa: RUF006
                    except RuntimeError:
                        # No running loop: close the coroutine so it is not leaked.
                        result.close()
            except Exception as exc:
                self._logger.error(
                    "event_handler_error",
                    event=str(event),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )
