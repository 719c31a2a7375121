from __future__ import annotations

from typing import Any, AsyncIterator

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return ""


class LangChainChat:
    """
    A conversation held against a LangChain chat model.

    History is kept in memory only and bounded to `max_history_turns` user/assistant
    pairs; the system prompt is always sent first.
    """

    def __init__(self, llm: BaseChatModel, *, system_prompt: str, max_history_turns: int = 20) -> None:
        self._llm = llm
        self._system_prompt = system_prompt
        self._max_history_turns = max_history_turns
        self._history: list[BaseMessage] = []

    @property
    def history(self) -> list[BaseMessage]:
        return list(self._history)

    def _build_messages(self, text: str) -> list[BaseMessage]:
        messages: list[BaseMessage] = []
        if self._system_prompt:
            messages.append(SystemMessage(content=self._system_prompt))
        messages.extend(self._history)
        messages.append(HumanMessage(content=text))
        return messages

    async def stream(self, text: str) -> AsyncIterator[str]:
        parts: list[str] = []
        async for chunk in self._llm.astream(self._build_messages(text)):
            delta = _content_text(chunk.content)
            if delta:
                parts.append(delta)
                yield delta

        self._history.extend([HumanMessage(content=text), AIMessage(content="".join(parts))])
        overflow = len(self._history) - 2 * self._max_history_turns
        if overflow > 0:
            del self._history[:overflow]
