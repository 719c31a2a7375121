from __future__ import annotations

from typing import List, Optional


def compose_system_prompt(base_prompt: str, *, max_reply_chars: Optional[int] = None) -> str:
    parts: List[str] = []
    if base_prompt.strip():
        parts.append(base_prompt.strip())
    rules = "Reply in plain text without Markdown formatting or code blocks."
    if max_reply_chars is not None:
        rules += f" Keep every reply under {max_reply_chars} characters."
    parts.append(rules)
    return "\n\n".join(parts).strip()
