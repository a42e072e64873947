"""Shared fixtures for atomchat tests."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio

from atomchat.aggregate import SessionAggregateUpdater
from atomchat.context.builder import ContextBuilder
from atomchat.events.bus import AtomchatEvent, EventBus
from atomchat.gateway.model import ModelGateway
from atomchat.models.config import AtomchatConfig, ModelConfig, StoreConfig
from atomchat.models.turn import Turn
from atomchat.orchestrator import TurnOrchestrator
from atomchat.store.pool import StorePool
from atomchat.store.turns import TurnStore


class FakeGateway(ModelGateway):
    """
    ModelGateway whose provider call is replaced by a scripted reply.

    ``reply`` may be a string (returned as the message content), ``None`` (empty
    content), an exception instance (raised), or a callable taking the call
    kwargs. Every call's kwargs are recorded in ``calls``.
    """

    def __init__(self, reply: Any = "Water is polar because oxygen is electronegative.") -> None:
        super().__init__(ModelConfig(model="test-model", timeout_secs=5.0))
        self.reply = reply
        self.calls: list[dict[str, Any]] = []

    async def _call_llm(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        reply = self.reply
        if callable(reply):
            reply = reply(kwargs)
        if isinstance(reply, BaseException):
            raise reply
        message = SimpleNamespace(role="assistant", content=reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="stop")])

    @property
    def last_messages(self) -> list[dict[str, Any]]:
        return self.calls[-1]["messages"]


@pytest.fixture
def config(tmp_path):
    """AtomchatConfig with a temp database path."""
    return AtomchatConfig(store=StoreConfig(db_path=str(tmp_path / "test.db")))


@pytest_asyncio.fixture
async def pool(config):
    """StorePool for the test database. Closed after each test."""
    p = StorePool()
    yield p
    await p.close_all()


@pytest_asyncio.fixture
async def store(config, pool):
    """Initialized TurnStore backed by a temp SQLite database (pool-managed)."""
    s = TurnStore(config.store, pool=pool)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[AtomchatEvent, dict[str, Any]]] = []

    def _collect(event: AtomchatEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def builder(store, config):
    return ContextBuilder(store, config.context)


@pytest.fixture
def orchestrator(store, gateway, builder, event_bus):
    return TurnOrchestrator(
        store,
        gateway,
        builder,
        SessionAggregateUpdater(store, event_bus),
        event_bus=event_bus,
    )


SESSION_ID = "user_TEST01"


def make_turn(
    turn_id: str,
    session_id: str = SESSION_ID,
    *,
    is_user: bool = True,
    content: str | None = None,
    status: str | None = None,
    was_image: bool = False,
    created_at: int | None = None,
) -> Turn:
    """Helper to create a test Turn."""
    fields: dict[str, Any] = {
        "id": turn_id,
        "session_id": session_id,
        "content": content if content is not None else f"content of {turn_id}",
        "modality": "image" if was_image else "text",
        "is_user": is_user,
        "status": status or ("delivered" if is_user else "completed"),
        "was_image": was_image,
    }
    if created_at is not None:
        fields["created_at"] = created_at
    return Turn(**fields)
