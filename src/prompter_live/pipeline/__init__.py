"""Pipeline orchestration: polling, AI exchanges, reply sanitizing and posting."""

from prompter_live.pipeline.orchestrator import PipelineError, PipelineOrchestrator, build_orchestrator
from prompter_live.pipeline.poster import ReplyPoster
from prompter_live.pipeline.sanitizer import has_visible_content, sanitize

__all__ = [
    "PipelineError",
    "PipelineOrchestrator",
    "ReplyPoster",
    "build_orchestrator",
    "has_visible_content",
    "sanitize",
]
