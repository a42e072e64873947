"""Model gateway for request/response calls to a hosted chat-completion API."""

from __future__ import annotations

import asyncio
import base64
import os
from types import SimpleNamespace
from typing import Any

import structlog

from atomchat.errors import ModelResponseError, ModelTimeoutError
from atomchat.models.config import OCR_SYSTEM_PROMPT, OCR_USER_PROMPT, ModelConfig


def image_data_url(image: bytes, mime_type: str = "image/jpeg") -> str:
    """Encode raw image bytes as a ``data:`` URL accepted by multimodal chat APIs."""
    encoded = base64.b64encode(image).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


class ModelGateway:
    """
    Thin async client over ``litellm.acompletion``.

    Each call is bounded by ``ModelConfig.timeout_secs``; exceeding it raises
    :class:`~atomchat.errors.ModelTimeoutError`. Once started, a call is never
    cancelled on the caller's behalf; it runs to completion, failure or
    timeout.

    Set ``ATOMCHAT_MOCK_LLM=1`` to get canned replies without an API key.
    """

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        self._logger = structlog.get_logger("atomchat.gateway")

    @property
    def config(self) -> ModelConfig:
        return self._config

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> str:
        """
        Send a message list and return the assistant's text.

        Args:
            messages: Provider-format messages, system instruction first.
            model: Override the configured model.
            max_tokens: Override the configured output limit.
            temperature: Override the configured temperature.
            response_format: Optional provider response format (e.g. JSON mode).

        Returns:
            The first choice's text. Empty when the model returned no text.

        Raises:
            ModelTimeoutError: If the call exceeds the configured timeout.
            ModelResponseError: If the response carries no message.
        """
        call_kwargs: dict[str, Any] = {
            "model": model or self._config.model,
            "messages": messages,
            "temperature": self._config.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self._config.max_tokens,
        }
        if response_format is not None:
            call_kwargs["response_format"] = response_format
        if self._config.api_key:
            call_kwargs["api_key"] = self._config.api_key

        timeout = self._config.timeout_secs
        try:
            response = await asyncio.wait_for(self._call_llm(**call_kwargs), timeout=timeout)
        except TimeoutError as exc:
            self._logger.warning("model_call_timeout", model=call_kwargs["model"], timeout=timeout)
            raise ModelTimeoutError(timeout) from exc

        return self._extract_content(response)

    async def extract_text(self, image: bytes) -> str:
        """Return the text visible in an image, verbatim."""
        messages = [
            {"role": "system", "content": OCR_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": OCR_USER_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_data_url(image)}},
                ],
            },
        ]
        return await self.complete(messages, max_tokens=self._config.ocr_max_tokens)

    async def _call_llm(self, **kwargs: Any) -> Any:
        """Issue the provider call. Replaced by fakes in tests."""
        if os.environ.get("ATOMCHAT_MOCK_LLM") == "1":
            return self._mock_response(kwargs["messages"])

        import litellm

        return await litellm.acompletion(**kwargs)

    @staticmethod
    def _extract_content(response: Any) -> str:
        choices = getattr(response, "choices", None)
        if not choices:
            raise ModelResponseError("Model response contained no choices")
        message = getattr(choices[0], "message", None)
        if message is None:
            raise ModelResponseError("Model response contained no message")
        return message.content or ""

    @staticmethod
    def _mock_response(messages: list[dict[str, Any]]) -> Any:
        """Build a response shaped like litellm's, echoing the last user message."""
        last_user = next(
            (m["content"] for m in reversed(messages) if m["role"] == "user"),
            "Hello",
        )
        if isinstance(last_user, list):
            last_user = " ".join(p.get("text", "") for p in last_user if p.get("type") == "text")
        message = SimpleNamespace(
            role="assistant", content=f"[Mock response to: {str(last_user)[:100]}]"
        )
        return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="stop")])
