"""Configuration models for atomchat components."""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field

DEFAULT_SYSTEM_PROMPT = (
    "You are Atomic, an AI chemistry teacher. You help students understand chemistry "
    "concepts. Keep your answers focused on chemistry and educational. Your responses "
    "should be clear and suitable for students."
)

OCR_SYSTEM_PROMPT = (
    "You are a text extraction tool. Your only job is to read and return the exact text "
    "from images. Do not add any explanations, descriptions, or additional context. Just "
    "return the text exactly as it appears in the image."
)

OCR_USER_PROMPT = "Extract and return only the text from this image, exactly as it appears."


class ModelConfig(BaseModel):
    """Configuration for the hosted chat-completion model."""

    model: str = Field(
        default="gpt-4o",
        description="Model string in litellm format (e.g. ``gpt-4o``, ``openai/gpt-4o-mini``).",
    )

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    max_tokens: int = Field(
        default=500,
        ge=1,
        le=32_000,
        description="Maximum output tokens for a chat turn.",
    )

    ocr_max_tokens: int = Field(
        default=1_000,
        ge=1,
        le=32_000,
        description="Maximum output tokens for text extraction from images.",
    )

    timeout_secs: float = Field(
        default=300.0,
        gt=0.0,
        le=600.0,
        description="Upper bound on a single model call. Exceeding it fails the turn.",
    )

    translation_model: str | None = Field(
        default=None,
        description="Model used by the translator. None = use ``model``.",
    )

    api_key: str | None = None
    """Provider API key. None = let litellm read it from the environment."""


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.atomchat/atomchat.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds SQLite waits on a locked database before raising."""

    delete_batch_size: int = Field(
        default=500,
        ge=1,
        le=10_000,
        description="Turns deleted per committed batch during account cleanup.",
    )


class ContextConfig(BaseModel):
    """Configuration for context window assembly."""

    max_history_turns: int = Field(
        default=20,
        ge=0,
        le=500,
        description="Most recent persisted turns sent to the model on a text turn.",
    )

    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    default_image_prompt: str = Field(
        default="Please help me understand the chemistry shown in this image.",
        min_length=1,
        description="Text sent alongside an image when the caller supplied none.",
    )


class TallyConfig(BaseModel):
    """Configuration for quiz scoring."""

    points_per_correct: int = Field(default=1_000, ge=0)

    answer_key_path: str | None = Field(
        default=None,
        description="CSV file with ``question_id,answer`` rows.",
    )


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: str = "INFO"
    format: Literal["json", "console"] = "json"


class AtomchatConfig(BaseModel):
    """
    Top-level configuration for an atomchat deployment.

    All sub-configs have sensible defaults and can be overridden individually.

    Example::

        config = AtomchatConfig(
            model=ModelConfig(model="openai/gpt-4o-mini", timeout_secs=60),
            store=StoreConfig(db_path="/tmp/atomchat.db"),
        )
    """

    model: ModelConfig = Field(default_factory=ModelConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    tally: TallyConfig = Field(default_factory=TallyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> AtomchatConfig:
        """Return a config instance with all defaults."""
        return cls()

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> AtomchatConfig:
        """
        Build a config from ``ATOMCHAT_*`` environment variables.

        Recognised variables: ``ATOMCHAT_MODEL``, ``ATOMCHAT_MODEL_TIMEOUT``,
        ``ATOMCHAT_DB_PATH``, ``ATOMCHAT_ANSWER_KEY``, ``ATOMCHAT_LOG_LEVEL``,
        ``ATOMCHAT_LOG_FORMAT`` and ``OPENAI_API_KEY``. Unset variables keep
        their defaults.

        Raises:
            pydantic.ValidationError: If a variable holds an out-of-range value.
        """
        env = os.environ if environ is None else environ

        model: dict[str, object] = {}
        if "ATOMCHAT_MODEL" in env:
            model["model"] = env["ATOMCHAT_MODEL"]
        if "ATOMCHAT_MODEL_TIMEOUT" in env:
            model["timeout_secs"] = env["ATOMCHAT_MODEL_TIMEOUT"]
        if "OPENAI_API_KEY" in env:
            model["api_key"] = env["OPENAI_API_KEY"]

        store: dict[str, object] = {}
        if "ATOMCHAT_DB_PATH" in env:
            store["db_path"] = env["ATOMCHAT_DB_PATH"]

        tally: dict[str, object] = {}
        if "ATOMCHAT_ANSWER_KEY" in env:
            tally["answer_key_path"] = env["ATOMCHAT_ANSWER_KEY"]

        logging: dict[str, object] = {}
        if "ATOMCHAT_LOG_LEVEL" in env:
            logging["level"] = env["ATOMCHAT_LOG_LEVEL"]
        if "ATOMCHAT_LOG_FORMAT" in env:
            logging["format"] = env["ATOMCHAT_LOG_FORMAT"]

        return cls.model_validate(
            {"model": model, "store": store, "tally": tally, "logging": logging}
        )
