"""
Callable endpoints: the request/response surface exposed to clients.

Each handler takes the decoded request ``data`` and a :class:`CallContext`
describing the verified caller, and returns a JSON-serialisable dict. The
hosting platform owns routing and token verification; it hands the verified
identity in as :class:`AuthInfo`.

Errors leave a handler only as :class:`CallableError`. Caller mistakes keep
their message; every other failure is logged here and replaced by a generic
``internal`` error so collaborator details never reach the client.
"""

from __future__ import annotations

import base64
import binascii
import functools
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field, ValidationError

from atomchat.accounts import AccountCleaner
from atomchat.aggregate import SessionAggregateUpdater
from atomchat.context.builder import ContextBuilder
from atomchat.errors import (
    AtomchatError,
    InternalError,
    InvalidArgumentError,
    UnauthenticatedError,
)
from atomchat.events.bus import EventBus
from atomchat.gateway.model import ModelGateway
from atomchat.gateway.translator import Translator
from atomchat.models.config import AtomchatConfig
from atomchat.models.turn import AnswerSubmission, TurnInput
from atomchat.orchestrator import TurnOrchestrator
from atomchat.scoring.tally import AnswerKey, ScoreTally
from atomchat.store.pool import StorePool
from atomchat.store.turns import TurnStore

_logger = structlog.get_logger("atomchat.functions")

_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")

GENERIC_INTERNAL_MESSAGE = "An internal error occurred. Please try again."


# ── Call context and errors ────────────────────────────────────────────────────


@dataclass
class AuthInfo:
    """A caller identity already verified by the hosting platform."""

    uid: str
    token: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str | None:
        name = self.token.get("name")
        return name if isinstance(name, str) else None


@dataclass
class CallContext:
    """Per-request context. ``auth`` is None for unauthenticated requests."""

    auth: AuthInfo | None = None


class CallableError(Exception):
    """The only error type a handler raises. ``code`` uses callable-protocol names."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> dict[str, str]:
        """Render in the callable-protocol error shape, e.g. ``{"status": "INTERNAL", ...}``."""
        return {"status": self.code.upper().replace("-", "_"), "message": self.message}


Handler = Callable[..., Awaitable[dict[str, Any]]]


def callable_endpoint(name: str) -> Callable[[Handler], Handler]:
    """Bind the callable name to the log context and sanitise escaping errors."""

    def decorator(func: Handler) -> Handler:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> dict[str, Any]:
            with structlog.contextvars.bound_contextvars(callable=name):
                try:
                    return await func(*args, **kwargs)
                except CallableError:
                    raise
                except (InvalidArgumentError, UnauthenticatedError) as exc:
                    raise CallableError(exc.code, exc.message) from exc
                except InternalError as exc:
                    _logger.error("callable_failed", error=str(exc), exc_info=True)
                    raise CallableError("internal", exc.message) from exc
                except Exception as exc:
                    _logger.error("callable_failed", error=str(exc), exc_info=True)
                    raise CallableError("internal", GENERIC_INTERNAL_MESSAGE) from exc

        return wrapper

    return decorator


# ── Request models ─────────────────────────────────────────────────────────────


class _Request(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}


class ExtractTextRequest(_Request):
    image_base64: str | None = Field(default=None, alias="imageBase64")


class ProcessTurnRequest(_Request):
    message: str = ""
    image_base64: str | None = Field(default=None, alias="imageBase64")
    modality: Literal["text", "image"] | None = None


class TallyAnswersRequest(_Request):
    answers: list[AnswerSubmission] = Field(default_factory=list)
    display_name: str | None = Field(default=None, alias="displayName")


class TranslateRequest(_Request):
    text: str | None = None
    target_language: str | None = Field(default=None, alias="targetLanguage")


def _parse(model: type[_Request], data: dict[str, Any] | None) -> Any:
    try:
        return model.model_validate(data or {})
    except ValidationError as exc:
        raise InvalidArgumentError(f"Invalid request: {exc.error_count()} invalid field(s).") from exc


def decode_image(value: str) -> bytes:
    """
    Decode a base64 image, with or without a ``data:image/...;base64,`` prefix.

    Raises:
        InvalidArgumentError: If the payload is empty or not valid base64.
    """
    payload = _DATA_URL_PREFIX.sub("", value.strip(), count=1)
    try:
        image = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidArgumentError("imageBase64 is not valid base64.") from exc
    if not image:
        raise InvalidArgumentError("The function must be called with imageBase64.")
    return image


def _require_auth(context: CallContext) -> AuthInfo:
    if context.auth is None or not context.auth.uid:
        raise UnauthenticatedError("The function must be called while authenticated.")
    return context.auth


# ── Functions ──────────────────────────────────────────────────────────────────


class Functions:
    """
    The set of callable handlers, wired to explicitly constructed collaborators.

    Usage::

        functions = await Functions.create(AtomchatConfig.from_env())
        try:
            result = await functions.process_turn(
                {"message": "Why is water polar?"},
                CallContext(auth=AuthInfo(uid="user-1")),
            )
        finally:
            await functions.close()
    """

    def __init__(
        self,
        *,
        store: TurnStore,
        gateway: ModelGateway,
        orchestrator: TurnOrchestrator,
        translator: Translator,
        tally: ScoreTally,
        cleaner: AccountCleaner,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._orchestrator = orchestrator
        self._translator = translator
        self._tally = tally
        self._cleaner = cleaner

    @classmethod
    async def create(
        cls,
        config: AtomchatConfig | None = None,
        *,
        gateway: ModelGateway | None = None,
        answer_key: AnswerKey | None = None,
        pool: StorePool | None = None,
        event_bus: EventBus | None = None,
    ) -> Functions:
        """
        Build and initialise every collaborator from ``config``.

        Args:
            config: Deployment configuration. Defaults to ``AtomchatConfig()``.
            gateway: Model gateway override (e.g. a fake in tests).
            answer_key: Answer key override. Otherwise loaded from
                ``config.tally.answer_key_path``, or empty when unset.
            pool: Shared connection pool. Defaults to ``StorePool.default()``.
            event_bus: Shared event bus for observers.
        """
        cfg = config or AtomchatConfig()
        bus = event_bus or EventBus()

        store = TurnStore(cfg.store, pool=pool or StorePool.default())
        await store.initialize()

        model_gateway = gateway or ModelGateway(cfg.model)
        if answer_key is None:
            path = cfg.tally.answer_key_path
            answer_key = AnswerKey.from_csv(path) if path else AnswerKey({})

        orchestrator = TurnOrchestrator(
            store,
            model_gateway,
            ContextBuilder(store, cfg.context),
            SessionAggregateUpdater(store, bus),
            event_bus=bus,
        )
        return cls(
            store=store,
            gateway=model_gateway,
            orchestrator=orchestrator,
            translator=Translator(model_gateway, model=cfg.model.translation_model),
            tally=ScoreTally(store, answer_key, cfg.tally, event_bus=bus),
            cleaner=AccountCleaner(store, event_bus=bus),
        )

    async def close(self) -> None:
        await self._store.close()

    @callable_endpoint("extractTextFromImage")
    async def extract_text(self, data: dict[str, Any] | None, context: CallContext) -> dict[str, Any]:
        request: ExtractTextRequest = _parse(ExtractTextRequest, data)
        if not request.image_base64:
            raise InvalidArgumentError("The function must be called with imageBase64.")
        text = await self._gateway.extract_text(decode_image(request.image_base64))
        return {"success": True, "text": text}

    @callable_endpoint("processChat")
    async def process_turn(self, data: dict[str, Any] | None, context: CallContext) -> dict[str, Any]:
        auth = _require_auth(context)
        request: ProcessTurnRequest = _parse(ProcessTurnRequest, data)

        modality = request.modality or ("image" if request.image_base64 else "text")
        image = decode_image(request.image_base64) if request.image_base64 else None
        result = await self._orchestrator.process_turn(
            auth.uid, TurnInput(content=request.message, image=image, modality=modality)
        )
        return {"success": True, "messageId": result.turn_id}

    @callable_endpoint("tallyAnswers")
    async def tally_answers(self, data: dict[str, Any] | None, context: CallContext) -> dict[str, Any]:
        auth = _require_auth(context)
        request: TallyAnswersRequest = _parse(TallyAnswersRequest, data)
        result = await self._tally.tally(
            auth.uid,
            request.answers,
            display_name=request.display_name,
            auth_display_name=auth.display_name,
        )
        return {
            "success": True,
            "pointsEarned": result.points_earned,
            "totalPoints": result.total_points,
        }

    @callable_endpoint("translate")
    async def translate(self, data: dict[str, Any] | None, context: CallContext) -> dict[str, Any]:
        request: TranslateRequest = _parse(TranslateRequest, data)
        result = await self._translator.translate(request.text or "", request.target_language or "")
        response: dict[str, Any] = {"translatedText": result.translated_text}
        if result.detected_source_language:
            response["detectedSourceLanguage"] = result.detected_source_language
        return response

    async def on_user_deleted(self, user_id: str) -> None:
        """
        Account-deletion hook, triggered by the platform when a user is removed.

        Failures propagate so the platform can retry; the cascade is idempotent.
        """
        with structlog.contextvars.bound_contextvars(trigger="onUserDeleted"):
            try:
                await self._cleaner.delete_account(user_id)
            except Exception as exc:
                _logger.error("account_cleanup_failed", user_id=user_id, error=str(exc))
                raise
