"""Translation pass-through backed by the model gateway."""

from __future__ import annotations

import json

import structlog
from jinja2 import Environment, StrictUndefined
from pydantic import ValidationError

from atomchat.errors import InvalidArgumentError, ModelResponseError
from atomchat.gateway.model import ModelGateway
from atomchat.models.turn import TranslationResult

_SYSTEM_PROMPT = (
    "You are a translation service. Reply with a single JSON object and nothing else."
)

_PROMPT_TEMPLATE = """\
Translate the text below into the language identified by "{{ target_language }}".
Return JSON with the keys "translated_text" (the translation) and
"detected_source_language" (the ISO 639-1 code of the source text, or null if unsure).

Text:
{{ text }}"""


class Translator:
    """
    Stateless translation collaborator.

    The prompt is rendered with Jinja2 and the model is asked for JSON, which
    is validated into a :class:`~atomchat.models.turn.TranslationResult`.
    """

    def __init__(self, gateway: ModelGateway, model: str | None = None) -> None:
        self._gateway = gateway
        self._model = model
        self._template = Environment(undefined=StrictUndefined).from_string(_PROMPT_TEMPLATE)
        self._logger = structlog.get_logger("atomchat.translator")

    async def translate(self, text: str, target_language: str) -> TranslationResult:
        """
        Translate ``text`` into ``target_language``.

        Raises:
            InvalidArgumentError: If either argument is empty.
            ModelResponseError: If the model reply is not the expected JSON.
        """
        if not text or not text.strip():
            raise InvalidArgumentError("The function must be called with text.")
        if not target_language or not target_language.strip():
            raise InvalidArgumentError("The function must be called with a targetLanguage.")

        prompt = self._template.render(text=text, target_language=target_language.strip())
        raw = await self._gateway.complete(
            [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            model=self._model,
            temperature=0.0,
            response_format={"type": "json_object"},
        )
        try:
            return TranslationResult.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            self._logger.warning("translation_parse_failed", error=str(exc))
            raise ModelResponseError("Translation response was not valid JSON") from exc
