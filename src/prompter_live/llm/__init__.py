"""LangChain-backed AI provider and its settings."""

from prompter_live.llm.chat import LangChainChat
from prompter_live.llm.provider import CrynuxChatProvider
from prompter_live.llm.settings import LLMSettings

__all__ = ["CrynuxChatProvider", "LLMSettings", "LangChainChat"]
