"""Tests for TurnOrchestrator."""

from __future__ import annotations

import asyncio

import pytest

from atomchat.aggregate import SessionAggregateUpdater
from atomchat.errors import (
    InvalidArgumentError,
    ModelResponseError,
    ModelTimeoutError,
    UnauthenticatedError,
)
from atomchat.events.bus import AtomchatEvent
from atomchat.models.turn import TurnInput
from atomchat.orchestrator import (
    EMPTY_RESPONSE_FALLBACK,
    ERROR_APOLOGY,
    TurnOrchestrator,
    make_id,
)
from atomchat.store.turns import TurnStateError
from tests.conftest import SESSION_ID, FakeGateway


def test_make_id_format():
    first, second = make_id("turn"), make_id("turn")
    assert first.startswith("turn_")
    assert first != second


class TestSuccessPath:
    async def test_returns_completed_assistant_turn(self, orchestrator, store, gateway):
        result = await orchestrator.process_turn(SESSION_ID, TurnInput(content="Why is water polar?"))

        turns = await store.list_turns(SESSION_ID)
        assert [(t.is_user, t.status) for t in turns] == [(True, "delivered"), (False, "completed")]
        assert turns[0].id == result.user_turn_id
        assert turns[1].id == result.turn_id
        assert turns[1].content == gateway.reply
        assert result.text == gateway.reply

    async def test_model_sees_system_history_and_current_turn(self, orchestrator, gateway):
        await orchestrator.process_turn(SESSION_ID, TurnInput(content="First"))
        await orchestrator.process_turn(SESSION_ID, TurnInput(content="Second"))

        messages = gateway.last_messages
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[1]["content"] == "First"
        assert messages[-1]["content"] == "Second"
        assert all(m["content"] != "" for m in messages)

    async def test_counter_is_two_per_completed_turn(self, orchestrator, store):
        for i in range(3):
            await orchestrator.process_turn(SESSION_ID, TurnInput(content=f"Question {i}"))
        record = await store.get_session(SESSION_ID)
        assert record.total_turns == 6

    async def test_image_turn_is_flagged_and_excluded_later(self, orchestrator, store, gateway):
        await orchestrator.process_turn(
            SESSION_ID, TurnInput(content="", image=b"jpegbytes", modality="image")
        )
        image_messages = gateway.last_messages
        assert len(image_messages) == 2
        assert image_messages[1]["content"][1]["type"] == "image_url"

        turns = await store.list_turns(SESSION_ID)
        assert turns[0].modality == "image"
        assert turns[0].was_image is True
        assert turns[1].was_image is False

        await orchestrator.process_turn(SESSION_ID, TurnInput(content="Follow-up"))
        roles = [m["role"] for m in gateway.last_messages]
        # Only the assistant reply to the image survives as history
        assert roles == ["system", "assistant", "user"]

    async def test_empty_model_reply_uses_fallback(self, orchestrator, store, gateway):
        gateway.reply = None
        result = await orchestrator.process_turn(SESSION_ID, TurnInput(content="Hello"))
        assert result.text == EMPTY_RESPONSE_FALLBACK
        turn = await store.get_turn(result.turn_id)
        assert turn.status == "completed"

    async def test_publishes_lifecycle_events(self, orchestrator, event_bus):
        result = await orchestrator.process_turn(SESSION_ID, TurnInput(content="Hi"))
        events = [e for e, _ in event_bus.collected]
        assert events == [
            AtomchatEvent.TURN_CREATED,
            AtomchatEvent.TURN_CREATED,
            AtomchatEvent.TURN_COMPLETED,
            AtomchatEvent.SESSION_UPDATED,
        ]
        assert event_bus.collected[2][1]["turn_id"] == result.turn_id


class TestValidation:
    @pytest.mark.parametrize(
        "turn_input",
        [
            TurnInput(content="", modality="text"),
            TurnInput(content="   ", modality="text"),
            TurnInput(content="caption only", modality="image"),
            TurnInput(content="", image=b"", modality="image"),
        ],
    )
    async def test_invalid_input_writes_nothing(self, orchestrator, store, gateway, turn_input):
        with pytest.raises(InvalidArgumentError):
            await orchestrator.process_turn(SESSION_ID, turn_input)
        assert await store.count_turns(SESSION_ID) == 0
        assert gateway.calls == []

    async def test_missing_session_is_unauthenticated(self, orchestrator, store):
        with pytest.raises(UnauthenticatedError):
            await orchestrator.process_turn("", TurnInput(content="Hi"))
        assert await store.count_turns("") == 0


class TestFailurePath:
    async def test_model_error_resolves_placeholder_to_apology(self, orchestrator, store, gateway):
        gateway.reply = RuntimeError("provider exploded")
        with pytest.raises(RuntimeError, match="provider exploded"):
            await orchestrator.process_turn(SESSION_ID, TurnInput(content="Hi"))

        turns = await store.list_turns(SESSION_ID)
        assert [(t.is_user, t.status) for t in turns] == [(True, "delivered"), (False, "error")]
        assert turns[1].content == ERROR_APOLOGY

    async def test_failure_does_not_increment_counter(self, orchestrator, store, gateway):
        await orchestrator.process_turn(SESSION_ID, TurnInput(content="ok"))
        gateway.reply = RuntimeError("down")
        with pytest.raises(RuntimeError):
            await orchestrator.process_turn(SESSION_ID, TurnInput(content="fails"))
        record = await store.get_session(SESSION_ID)
        assert record.total_turns == 2

    async def test_malformed_response_fails_turn(self, orchestrator, store, gateway, monkeypatch):
        async def no_choices(**kwargs):
            return object()

        monkeypatch.setattr(gateway, "_call_llm", no_choices)
        with pytest.raises(ModelResponseError):
            await orchestrator.process_turn(SESSION_ID, TurnInput(content="Hi"))
        turns = await store.list_turns(SESSION_ID)
        assert turns[-1].status == "error"

    async def test_timeout_resolves_placeholder(self, store, builder, event_bus):
        class SlowGateway(FakeGateway):
            async def _call_llm(self, **kwargs):
                await asyncio.sleep(10)

        gateway = SlowGateway()
        gateway._config = gateway.config.model_copy(update={"timeout_secs": 0.01})
        orchestrator = TurnOrchestrator(
            store, gateway, builder, SessionAggregateUpdater(store), event_bus=event_bus
        )
        with pytest.raises(ModelTimeoutError):
            await orchestrator.process_turn(SESSION_ID, TurnInput(content="Hi"))
        turns = await store.list_turns(SESSION_ID)
        assert turns[-1].status == "error"

    async def test_cancelled_model_call_resolves_placeholder(self, store, builder, event_bus):
        started = asyncio.Event()

        class HangingGateway(FakeGateway):
            async def _call_llm(self, **kwargs):
                started.set()
                await asyncio.sleep(30)

        gateway = HangingGateway()
        gateway._config = gateway.config.model_copy(update={"timeout_secs": 60.0})
        orchestrator = TurnOrchestrator(
            store, gateway, builder, SessionAggregateUpdater(store), event_bus=event_bus
        )
        task = asyncio.create_task(orchestrator.process_turn(SESSION_ID, TurnInput(content="Hi")))
        await asyncio.wait_for(started.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        turns = await store.list_turns(SESSION_ID)
        assert [(t.is_user, t.status) for t in turns] == [(True, "delivered"), (False, "error")]
        assert turns[1].content == ERROR_APOLOGY
        assert await store.get_session(SESSION_ID) is None

    async def test_context_failure_resolves_placeholder(self, orchestrator, store, monkeypatch):
        async def broken_build(*args, **kwargs):
            raise OSError("store read failed")

        monkeypatch.setattr(orchestrator._context_builder, "build", broken_build)
        with pytest.raises(OSError):
            await orchestrator.process_turn(SESSION_ID, TurnInput(content="Hi"))
        turns = await store.list_turns(SESSION_ID)
        assert turns[-1].status == "error"
        assert turns[-1].content == ERROR_APOLOGY

    async def test_placeholder_creation_failure_writes_no_compensation(
        self, orchestrator, store, monkeypatch
    ):
        """If the placeholder never exists, only the user turn remains and the error propagates."""
        original_append = store.append_turn

        async def append_user_only(turn):
            if not turn.is_user:
                raise OSError("write rejected")
            return await original_append(turn)

        resolve_calls = []

        async def record_resolve(*args, **kwargs):
            resolve_calls.append(args)

        monkeypatch.setattr(store, "append_turn", append_user_only)
        monkeypatch.setattr(store, "resolve_turn", record_resolve)
        with pytest.raises(OSError, match="write rejected"):
            await orchestrator.process_turn(SESSION_ID, TurnInput(content="Hi"))

        turns = await store.list_turns(SESSION_ID)
        assert [t.is_user for t in turns] == [True]
        assert resolve_calls == []

    async def test_failed_compensation_still_surfaces_original_error(
        self, orchestrator, store, gateway, monkeypatch
    ):
        gateway.reply = RuntimeError("model down")

        async def broken_resolve(*args, **kwargs):
            raise OSError("store down too")

        monkeypatch.setattr(store, "resolve_turn", broken_resolve)
        with pytest.raises(RuntimeError, match="model down"):
            await orchestrator.process_turn(SESSION_ID, TurnInput(content="Hi"))

    async def test_failure_publishes_turn_failed(self, orchestrator, gateway, event_bus):
        gateway.reply = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            await orchestrator.process_turn(SESSION_ID, TurnInput(content="Hi"))
        failed = [p for e, p in event_bus.collected if e == AtomchatEvent.TURN_FAILED]
        assert len(failed) == 1
        assert failed[0]["error"] == "boom"


class TestInvariants:
    async def test_no_placeholder_left_processing(self, orchestrator, store, gateway):
        """Across mixed success and failure, every assistant turn ends terminal."""
        outcomes = ["ok", RuntimeError("x"), "ok", None, RuntimeError("y")]
        for reply in outcomes:
            gateway.reply = reply
            try:
                await orchestrator.process_turn(SESSION_ID, TurnInput(content="q"))
            except RuntimeError:
                pass
        turns = await store.list_turns(SESSION_ID)
        assistant = [t for t in turns if not t.is_user]
        assert len(assistant) == len(outcomes)
        assert all(t.status in ("completed", "error") for t in assistant)
        record = await store.get_session(SESSION_ID)
        assert record.total_turns == 2 * 3

    async def test_resolved_turn_never_regresses(self, orchestrator, store):
        result = await orchestrator.process_turn(SESSION_ID, TurnInput(content="q"))
        with pytest.raises(TurnStateError):
            await store.resolve_turn(result.turn_id, "error", ERROR_APOLOGY)
        turn = await store.get_turn(result.turn_id)
        assert turn.status == "completed"

    async def test_concurrent_turns_same_session(self, orchestrator, store):
        """Concurrent turns are not serialised, but each resolves its own placeholder."""
        results = await asyncio.gather(
            *(orchestrator.process_turn(SESSION_ID, TurnInput(content=f"q{i}")) for i in range(4))
        )
        assert len({r.turn_id for r in results}) == 4
        turns = await store.list_turns(SESSION_ID)
        assert len(turns) == 8
        assert all(t.status != "processing" for t in turns)
        record = await store.get_session(SESSION_ID)
        assert record.total_turns == 8

    async def test_rollup_failure_does_not_fail_turn(self, orchestrator, store, monkeypatch):
        async def broken_increment(*args, **kwargs):
            raise OSError("rollup unavailable")

        monkeypatch.setattr(store, "increment_session", broken_increment)
        result = await orchestrator.process_turn(SESSION_ID, TurnInput(content="q"))
        turn = await store.get_turn(result.turn_id)
        assert turn.status == "completed"
