"""atomchat data models."""

from atomchat.models.config import (
    AtomchatConfig,
    ContextConfig,
    LoggingConfig,
    ModelConfig,
    StoreConfig,
    TallyConfig,
)
from atomchat.models.turn import (
    AnswerSubmission,
    LeaderboardEntry,
    Modality,
    SessionRecord,
    TallyResult,
    TranslationResult,
    Turn,
    TurnInput,
    TurnResult,
    TurnStatus,
)

__all__ = [
    # Config
    "AtomchatConfig",
    "ContextConfig",
    "LoggingConfig",
    "ModelConfig",
    "StoreConfig",
    "TallyConfig",
    # Turns
    "Modality",
    "TurnStatus",
    "Turn",
    "TurnInput",
    "TurnResult",
    # Aggregates
    "SessionRecord",
    "LeaderboardEntry",
    # Quiz
    "AnswerSubmission",
    "TallyResult",
    # Translation
    "TranslationResult",
]
