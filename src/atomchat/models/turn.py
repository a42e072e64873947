"""Core turn, session and leaderboard data models for atomchat."""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, Field, field_validator

Modality = Literal["text", "image"]
TurnStatus = Literal["delivered", "processing", "completed", "error"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error"})
"""Statuses a turn can never leave once reached."""


def now_ms() -> int:
    """Current time as a unix millisecond timestamp."""
    return int(time.time() * 1000)


# ── Turn Models ────────────────────────────────────────────────────────────────


class TurnInput(BaseModel):
    """
    A single incoming user turn as received from a caller.

    ``image`` holds the raw image bytes; the context builder is responsible for
    encoding them for the provider. Validation of the modality/payload pairing
    happens in the orchestrator so that it can raise the right error type.
    """

    content: str = ""
    image: bytes | None = None
    modality: Modality = "text"

    @property
    def is_image(self) -> bool:
        return self.modality == "image"


class Turn(BaseModel):
    """
    A single persisted message in a session's ordered history.

    Turns are append-only. The only permitted mutation is the one-way status
    transition of an assistant placeholder from ``processing`` to
    ``completed`` or ``error`` (see ``TurnStore.resolve_turn``).
    """

    id: str
    """ULID-based sortable ID, e.g. ``turn_01JXYZ6K3MNPQR4STUVWXYZ01``."""
    session_id: str
    content: str = ""
    modality: Modality = "text"
    is_user: bool
    status: TurnStatus
    created_at: int = Field(default_factory=now_ms)
    """Unix millisecond timestamp."""
    was_image: bool = False
    """User turns only: True when the turn originated from an image upload."""
    seq: int = 0
    """Store-assigned insertion sequence; breaks ties between equal timestamps."""

    @property
    def role(self) -> Literal["user", "assistant"]:
        return "user" if self.is_user else "assistant"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ── Aggregates ─────────────────────────────────────────────────────────────────


class SessionRecord(BaseModel):
    """Per-user rollup metadata, maintained by the SessionAggregateUpdater."""

    user_id: str
    last_interaction: int
    total_turns: int = 0


class LeaderboardEntry(BaseModel):
    """A user's accumulated quiz score."""

    user_id: str
    points: int = 0
    display_name: str = "Anonymous"
    last_updated: int = Field(default_factory=now_ms)


# ── Quiz Models ────────────────────────────────────────────────────────────────


class AnswerSubmission(BaseModel):
    """One submitted answer. Accepts the camelCase ``questionId`` used by callers."""

    question_id: str = Field(alias="questionId")
    answer: str

    model_config = {"populate_by_name": True}

    @field_validator("question_id", "answer", mode="before")
    @classmethod
    def _coerce_numbers(cls, value: object) -> object:
        # Callers send numeric ids; the answer key is keyed by string.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


# ── Result Types ───────────────────────────────────────────────────────────────


class TurnResult(BaseModel):
    """The result of a successful ``TurnOrchestrator.process_turn()`` call."""

    turn_id: str
    """ID of the completed assistant turn (the placeholder's correlation handle)."""
    user_turn_id: str
    text: str


class TallyResult(BaseModel):
    """The result of a ``ScoreTally.tally()`` call."""

    user_id: str
    points_earned: int
    correct_count: int
    total_points: int
    display_name: str


class TranslationResult(BaseModel):
    """Output of the translation collaborator."""

    translated_text: str
    detected_source_language: str | None = None
