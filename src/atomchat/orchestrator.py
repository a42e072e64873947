"""Turn orchestration: the state machine behind every chat turn."""

from __future__ import annotations

import asyncio

import structlog
from ulid import ULID

from atomchat.aggregate import SessionAggregateUpdater
from atomchat.context.builder import ContextBuilder
from atomchat.errors import InvalidArgumentError, UnauthenticatedError
from atomchat.events.bus import AtomchatEvent, EventBus
from atomchat.gateway.model import ModelGateway
from atomchat.models.turn import Turn, TurnInput, TurnResult
from atomchat.store.turns import TurnStore

ERROR_APOLOGY = "Sorry, an error occurred while processing your message."
"""Content of an assistant turn whose processing failed. Shown to the user verbatim."""

EMPTY_RESPONSE_FALLBACK = "Sorry, I could not generate a response."
"""Content of an assistant turn when the model answered with no text."""

TURNS_PER_INTERACTION = 2


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (e.g. ``"turn"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


class TurnOrchestrator:
    """
    Coordinates one user turn from persistence to model reply.

    Sequence for :meth:`process_turn`:

    1. Append the user turn (``delivered``).
    2. Append the assistant placeholder (``processing``). Its ID is the
       correlation handle for the rest of the turn.
    3. Build the context window.
    4. Call the model.
    5. Resolve the placeholder to ``completed`` and add 2 to the session's
       turn count.

    If anything in steps 3-5 fails, or the task is cancelled, the placeholder
    is resolved to ``error`` with :data:`ERROR_APOLOGY` before the exception
    propagates. If the placeholder was never written, nothing is compensated.
    Either way no placeholder is left in ``processing`` when this method returns.

    Two turns for the same session running at once are not serialised; both
    append their turns and may read overlapping history.

    Usage::

        orchestrator = TurnOrchestrator(store, gateway, context_builder, updater)
        result = await orchestrator.process_turn(uid, TurnInput(content="What is a mole?"))
        print(result.text)
    """

    def __init__(
        self,
        store: TurnStore,
        gateway: ModelGateway,
        context_builder: ContextBuilder,
        aggregate_updater: SessionAggregateUpdater,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._context_builder = context_builder
        self._aggregate_updater = aggregate_updater
        self._event_bus = event_bus or EventBus()
        self._logger = structlog.get_logger("atomchat.orchestrator")

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    async def process_turn(self, session_id: str, turn_input: TurnInput) -> TurnResult:
        """
        Persist a user turn, obtain the model reply and persist it.

        Args:
            session_id: The authenticated caller's ID, which is also the session key.
            turn_input: The user's text or image.

        Returns:
            TurnResult carrying the assistant turn's ID and text.

        Raises:
            UnauthenticatedError: If ``session_id`` is empty.
            InvalidArgumentError: If the input does not match its modality.
                Raised before anything is written.
            Exception: Any store or model failure, after the placeholder (if
                created) has been resolved to ``error``.
        """
        if not session_id:
            raise UnauthenticatedError("The function must be called while authenticated.")
        self._validate(turn_input)
        log = self._logger.bind(session_id=session_id)

        user_turn = await self._store.append_turn(
            Turn(
                id=make_id("turn"),
                session_id=session_id,
                content=turn_input.content,
                modality=turn_input.modality,
                is_user=True,
                status="delivered",
                was_image=turn_input.is_image,
            )
        )
        self._publish_created(user_turn)

        placeholder: Turn | None = None
        try:
            placeholder = await self._store.append_turn(
                Turn(
                    id=make_id("turn"),
                    session_id=session_id,
                    content="",
                    modality="text",
                    is_user=False,
                    status="processing",
                )
            )
            self._publish_created(placeholder)

            context = await self._context_builder.build(session_id, turn_input, before=user_turn)
            reply = await self._gateway.complete(context.messages)
            text = reply or EMPTY_RESPONSE_FALLBACK

            await self._store.resolve_turn(placeholder.id, "completed", text)
        except asyncio.CancelledError as exc:
            log.warning("turn_cancelled")
            if placeholder is not None:
                # The resolve write runs to completion even under a second cancellation
                await asyncio.shield(self._fail_placeholder(placeholder, exc))
            raise
        except Exception as exc:
            log.error("turn_failed", error=str(exc), exc_info=True)
            if placeholder is not None:
                await self._fail_placeholder(placeholder, exc)
            raise

        self._event_bus.publish(
            AtomchatEvent.TURN_COMPLETED, {"turn_id": placeholder.id, "session_id": session_id}
        )
        await self._aggregate_updater.apply_delta(session_id, TURNS_PER_INTERACTION)

        log.info(
            "turn_completed",
            user_turn_id=user_turn.id,
            turn_id=placeholder.id,
            mode=context.mode,
            history_count=len(context.history_turn_ids),
        )
        return TurnResult(turn_id=placeholder.id, user_turn_id=user_turn.id, text=text)

    async def _fail_placeholder(self, placeholder: Turn, cause: BaseException) -> None:
        """Resolve the placeholder to ``error``. A failure here is logged, not raised."""
        try:
            await self._store.resolve_turn(placeholder.id, "error", ERROR_APOLOGY)
        except Exception as exc:
            self._logger.error(
                "placeholder_resolution_failed",
                session_id=placeholder.session_id,
                turn_id=placeholder.id,
                error=str(exc),
            )
            return
        self._event_bus.publish(
            AtomchatEvent.TURN_FAILED,
            {"turn_id": placeholder.id, "session_id": placeholder.session_id, "error": str(cause)},
        )

    def _publish_created(self, turn: Turn) -> None:
        self._event_bus.publish(
            AtomchatEvent.TURN_CREATED,
            {"turn_id": turn.id, "session_id": turn.session_id, "role": turn.role},
        )

    @staticmethod
    def _validate(turn_input: TurnInput) -> None:
        if turn_input.is_image:
            if not turn_input.image:
                raise InvalidArgumentError("The function must be called with an image.")
        elif not turn_input.content.strip():
            raise InvalidArgumentError("The function must be called with a message.")
