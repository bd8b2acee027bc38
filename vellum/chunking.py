"""Paragraph and heading aware splitting of note text into chunks."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .config import DEFAULT_MAX_CHUNK_CHARS

_HEADING_RE = re.compile(r"^ {0,3}#{1,6}(?:\s|$)")
_FENCE_RE = re.compile(r"^ {0,3}(```|~~~)")
_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]*\s+")
_WHITESPACE_RE = re.compile(r"\s")
# Break points are only looked for in the last 30% of an oversized window.
_BREAK_SEARCH_FRACTION = 0.7


@dataclass(frozen=True, slots=True)
class TextChunk:
    text: str
    offset: int


def split_text(text: str, max_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> list[TextChunk]:
    """Split *text* into stripped chunks of at most *max_chars* characters.

    Every paragraph becomes its own chunk. A heading is folded into the
    paragraph that follows it when both fit together. Paragraphs that are
    too long are cut at a sentence end, then a line break, then whitespace,
    and only as a last resort in the middle of a word.
    """

    if max_chars <= 0:
        raise ValueError("max_chars must be > 0")
    chunks: list[TextChunk] = []
    pending_heading: tuple[int, int] | None = None
    for start, end, is_heading in _blocks(text):
        if pending_heading is not None:
            heading_start, heading_end = pending_heading
            pending_heading = None
            if not is_heading and end - heading_start <= max_chars:
                chunks.append(TextChunk(text=text[heading_start:end], offset=heading_start))
                continue
            chunks.extend(_split_span(text, heading_start, heading_end, max_chars))
        if is_heading:
            pending_heading = (start, end)
            continue
        chunks.extend(_split_span(text, start, end, max_chars))
    if pending_heading is not None:
        chunks.extend(_split_span(text, *pending_heading, max_chars))
    return chunks


def _blocks(text: str) -> list[tuple[int, int, bool]]:
    """Return ``(start, end, is_heading)`` spans separated by blank lines."""

    blocks: list[tuple[int, int, bool]] = []
    start: int | None = None
    end = 0
    in_fence = False
    pos = 0
    for line in text.splitlines(keepends=True):
        line_start = pos
        pos += len(line)
        if _FENCE_RE.match(line):
            in_fence = not in_fence
        elif not in_fence:
            if not line.strip():
                if start is not None:
                    blocks.append((start, end, False))
                    start = None
                continue
            if _HEADING_RE.match(line):
                if start is not None:
                    blocks.append((start, end, False))
                    start = None
                blocks.append((line_start, pos, True))
                continue
        if start is None:
            start = line_start
        end = pos
    if start is not None:
        blocks.append((start, end, False))

    trimmed: list[tuple[int, int, bool]] = []
    for block_start, block_end, is_heading in blocks:
        span = _trim(text, block_start, block_end)
        if span is not None:
            trimmed.append((span[0], span[1], is_heading))
    return trimmed


def _split_span(text: str, start: int, end: int, max_chars: int) -> list[TextChunk]:
    pieces: list[TextChunk] = []
    while end - start > max_chars:
        cut = _break_point(text[start : start + max_chars])
        span = _trim(text, start, start + cut)
        if span is not None:
            pieces.append(TextChunk(text=text[span[0] : span[1]], offset=span[0]))
        start += cut
        while start < end and text[start].isspace():
            start += 1
    span = _trim(text, start, end)
    if span is not None:
        pieces.append(TextChunk(text=text[span[0] : span[1]], offset=span[0]))
    return pieces


def _break_point(window: str) -> int:
    floor = max(1, int(len(window) * _BREAK_SEARCH_FRACTION))
    sentence_end = None
    for match in _SENTENCE_END_RE.finditer(window, floor - 1):
        sentence_end = match.end()
    if sentence_end is not None:
        return sentence_end
    line_break = window.rfind("\n", floor)
    if line_break >= 0:
        return line_break + 1
    for idx in range(len(window) - 1, floor - 1, -1):
        if _WHITESPACE_RE.match(window[idx]):
            return idx + 1
    return len(window)


def _trim(text: str, start: int, end: int) -> tuple[int, int] | None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start >= end:
        return None
    return start, end
