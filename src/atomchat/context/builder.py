"""Context window assembly algorithm."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from atomchat.gateway.model import image_data_url
from atomchat.models.config import ContextConfig
from atomchat.models.turn import Turn, TurnInput
from atomchat.store.turns import TurnStore


@dataclass
class BuiltContext:
    """The assembled message list ready for a model call."""

    messages: list[dict[str, Any]]
    mode: Literal["text", "image"]
    history_turn_ids: list[str] = field(default_factory=list)
    """IDs of the persisted turns included as history, oldest first."""


class ContextBuilder:
    """
    Assembles the exact message list sent to the model for one turn.

    Two mutually exclusive modes:

    - **Image mode**: no history. System instruction, then one user message
      holding the caller's text (or the configured default) and the image.
    - **Text mode**: image-originated turns are dropped first, then the most
      recent ``max_history_turns`` remaining turns are taken newest-first and
      reversed. System instruction, history by authorship, current text.

    Image turns are excluded from later text turns rather than re-sent as
    base64 on every request.
    """

    def __init__(self, store: TurnStore, config: ContextConfig) -> None:
        self._store = store
        self._config = config
        self._logger = structlog.get_logger("atomchat.context_builder")

    async def build(
        self,
        session_id: str,
        turn_input: TurnInput,
        *,
        before: Turn | None = None,
    ) -> BuiltContext:
        """
        Build the model request for the current turn.

        Args:
            session_id: The session whose history is used.
            turn_input: The current user input; its modality selects the mode.
            before: The persisted current user turn. History is limited to
                turns ordered strictly before it, so the turn is not sent twice.

        Returns:
            BuiltContext with provider-format messages.
        """
        system = {"role": "system", "content": self._config.system_prompt}

        if turn_input.is_image:
            if turn_input.image is None:
                raise ValueError("image mode requires an image payload")
            text = turn_input.content.strip() or self._config.default_image_prompt
            user = {
                "role": "user",
                "content": [
                    {"type": "text", "text": text},
                    {"type": "image_url", "image_url": {"url": image_data_url(turn_input.image)}},
                ],
            }
            self._logger.debug("context_built", session_id=session_id, mode="image")
            return BuiltContext(messages=[system, user], mode="image")

        recent = await self._store.list_recent_turns(
            session_id,
            limit=self._config.max_history_turns,
            before=before,
            exclude_images=True,
        )
        recent.reverse()  # Restore chronological order

        messages: list[dict[str, Any]] = [system]
        messages.extend({"role": t.role, "content": t.content} for t in recent)
        messages.append({"role": "user", "content": turn_input.content})

        self._logger.debug(
            "context_built",
            session_id=session_id,
            mode="text",
            history_count=len(recent),
        )
        return BuiltContext(
            messages=messages,
            mode="text",
            history_turn_ids=[t.id for t in recent],
        )
