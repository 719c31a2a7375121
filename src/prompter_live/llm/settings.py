from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class LLMSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = ""
    api_key: str = ""
    model: str = ""
    vram_limit: Optional[int] = None
    temperature: float = 0.5
    timeout_seconds: float = 60
    max_retries: int = 2
