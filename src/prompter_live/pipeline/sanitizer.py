from __future__ import annotations

import re
import unicodedata

DEFAULT_TRUNCATION_SUFFIX = "..."

_FENCED_BLOCK = re.compile(r"(```|~~~).*?(?:\1|\Z)", re.DOTALL)
_INLINE_CODE = re.compile(r"`([^`\n]+)`")
_BOLD = re.compile(r"(\*\*|__)(?=\S)(.+?)(?<=\S)\1")
_STRIKE = re.compile(r"~~(?=\S)(.+?)(?<=\S)~~")
_ITALIC_STAR = re.compile(r"(?<![\w*])\*(?=[^\s*])(.+?)(?<=[^\s*])\*(?![\w*])")
_ITALIC_UNDERSCORE = re.compile(r"(?<![\w_])_(?=[^\s_])(.+?)(?<=[^\s_])_(?![\w_])")
_LINE_MARKER = re.compile(r"^[ \t]*(?:(?:>[ \t]?)+|#{1,6}[ \t]+|[-*+][ \t]+|\d{1,3}[.)][ \t]+)")
_BLANK_RUNS = re.compile(r"\n{2,}")


def _strip_line_markers(line: str) -> str:
    # Nested markers such as "> - item" are removed one layer at a time.
    while True:
        stripped = _LINE_MARKER.sub("", line, count=1)
        if stripped == line:
            return line
        line = stripped


def sanitize(raw: str, cap: int, *, suffix: str = DEFAULT_TRUNCATION_SUFFIX) -> str:
    """
    Convert model output into plain chat text of at most `cap` code points.

    Fenced code blocks are dropped, inline code and emphasis are unwrapped,
    heading/quote/list markers are removed, blank-line runs collapse into a
    single newline and over-long text is cut and terminated with `suffix`.
    """
    if cap < len(suffix):
        raise ValueError(f"cap ({cap}) must be at least the suffix length ({len(suffix)})")

    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    text = _FENCED_BLOCK.sub("", text)
    text = _INLINE_CODE.sub(r"\1", text)
    text = _BOLD.sub(r"\2", text)
    text = _STRIKE.sub(r"\1", text)
    text = _ITALIC_STAR.sub(r"\1", text)
    text = _ITALIC_UNDERSCORE.sub(r"\1", text)

    lines = [_strip_line_markers(line).rstrip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = _BLANK_RUNS.sub("\n", text).strip()

    # len() counts code points, not bytes.
    if len(text) > cap:
        text = text[: cap - len(suffix)].rstrip() + suffix
    return text


def has_visible_content(text: str) -> bool:
    """False for text made only of whitespace and punctuation."""
    return any(not ch.isspace() and not unicodedata.category(ch).startswith("P") for ch in text)
