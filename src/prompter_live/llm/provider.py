from __future__ import annotations

import logging

from langchain_crynux import ChatCrynux

from prompter_live.llm.chat import LangChainChat
from prompter_live.llm.prompts import compose_system_prompt
from prompter_live.llm.settings import LLMSettings

logger = logging.getLogger(__name__)


class CrynuxChatProvider:
    """AIProvider that opens streaming conversations on an OpenAI-compatible Crynux endpoint."""

    def __init__(
        self,
        *,
        llm: LLMSettings,
        max_history_turns: int = 20,
        max_reply_chars: int | None = None,
    ) -> None:
        self._llm_config = llm
        self._max_history_turns = max_history_turns
        self._max_reply_chars = max_reply_chars

    def _build_model(self, model: str) -> ChatCrynux:
        llm = self._llm_config
        return ChatCrynux(
            base_url=llm.base_url,
            api_key=llm.api_key,
            model=model,
            **({"vram_limit": llm.vram_limit} if llm.vram_limit is not None else {}),
            temperature=llm.temperature,
            request_timeout=llm.timeout_seconds,
            max_retries=llm.max_retries,
        )

    async def open_chat(self, *, model: str, system_instruction: str) -> LangChainChat:
        if not self._llm_config.base_url or not self._llm_config.api_key:
            raise ValueError("LLM base_url and api_key are required to open a chat.")
        logger.info("llm.chat_opening model=%s base_url=%s", model, self._llm_config.base_url)
        return LangChainChat(
            self._build_model(model),
            system_prompt=compose_system_prompt(system_instruction, max_reply_chars=self._max_reply_chars),
            max_history_turns=self._max_history_turns,
        )
