"""
atomchat: conversation turn processing for a chemistry-tutor chat backend.

Primary entry point::

    from atomchat import AtomchatConfig, AuthInfo, CallContext, Functions

    functions = await Functions.create(AtomchatConfig.from_env())
    reply = await functions.process_turn(
        {"message": "What is an ionic bond?"},
        CallContext(auth=AuthInfo(uid="user-123")),
    )
"""

from atomchat.accounts import AccountCleaner
from atomchat.aggregate import SessionAggregateUpdater
from atomchat.context.builder import BuiltContext, ContextBuilder
from atomchat.errors import (
    AtomchatError,
    InternalError,
    InvalidArgumentError,
    ModelResponseError,
    ModelTimeoutError,
    UnauthenticatedError,
)
from atomchat.events.bus import AtomchatEvent, EventBus
from atomchat.functions import AuthInfo, CallableError, CallContext, Functions
from atomchat.gateway.model import ModelGateway
from atomchat.gateway.translator import Translator
from atomchat.models import (
    AnswerSubmission,
    AtomchatConfig,
    ContextConfig,
    LeaderboardEntry,
    LoggingConfig,
    ModelConfig,
    SessionRecord,
    StoreConfig,
    TallyConfig,
    TallyResult,
    TranslationResult,
    Turn,
    TurnInput,
    TurnResult,
)
from atomchat.observability import configure_logging
from atomchat.orchestrator import ERROR_APOLOGY, TurnOrchestrator, make_id
from atomchat.scoring.tally import AnswerKey, ScoreTally
from atomchat.store import StorePool, TurnStore

__version__ = "0.1.0"

__all__ = [
    # Core
    "TurnOrchestrator",
    "ContextBuilder",
    "BuiltContext",
    "SessionAggregateUpdater",
    "ERROR_APOLOGY",
    "make_id",
    # Callables
    "Functions",
    "CallContext",
    "AuthInfo",
    "CallableError",
    # Collaborators
    "ModelGateway",
    "Translator",
    "ScoreTally",
    "AnswerKey",
    "AccountCleaner",
    "TurnStore",
    "StorePool",
    # Config
    "AtomchatConfig",
    "ModelConfig",
    "StoreConfig",
    "ContextConfig",
    "TallyConfig",
    "LoggingConfig",
    # Models
    "Turn",
    "TurnInput",
    "TurnResult",
    "SessionRecord",
    "LeaderboardEntry",
    "AnswerSubmission",
    "TallyResult",
    "TranslationResult",
    # Errors
    "AtomchatError",
    "InvalidArgumentError",
    "UnauthenticatedError",
    "InternalError",
    "ModelResponseError",
    "ModelTimeoutError",
    # Events
    "EventBus",
    "AtomchatEvent",
    # Logging
    "configure_logging",
]
