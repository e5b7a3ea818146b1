import bisect
import re

import structlog

from shop_translator.config import settings
from shop_translator.schemas import Chunk

log = structlog.get_logger(__name__)

_OPEN_TAG_RE = re.compile(r"<([a-z][^>]*?)>", re.IGNORECASE)
_CLOSE_TAG_RE = re.compile(r"</[a-z]+>", re.IGNORECASE)
_LIST_RE = re.compile(r"<[uo]l\b[^>]*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_PARAGRAPH_RE = re.compile(r"\n[ \t\r]*\n")
_SENTENCE_RE = re.compile(r"[.!?]+[\"')\]]*(?=\s)|[。！？]+")
_WHITESPACE_RE = re.compile(r"\s+")

# spans no boundary may fall inside
_ATOMIC_RE = re.compile(r"__PROTECTED_[A-Z_]+?_\d+__|\{\{.*?\}\}|\{%.*?%\}", re.DOTALL)


def is_likely_html(text) -> bool:
    if not isinstance(text, str):
        return False
    return bool(_OPEN_TAG_RE.search(text) and _CLOSE_TAG_RE.search(text))


def _coerce_limit(value: int | None) -> int:
    if value is None or value <= 0:
        value = settings.max_chunk_chars
    return max(settings.min_chunk_chars, int(value))


def _block_boundaries(text: str, html_mode: bool) -> list[int]:
    if html_mode:
        # before an opening tag or after a closing one, never between text and its closing tag
        positions = set()
        for m in _TAG_RE.finditer(text):
            if m.group(0).startswith("</"):
                positions.add(m.end())
            else:
                positions.add(m.start())
        return sorted(positions)
    return [m.end() for m in _PARAGRAPH_RE.finditer(text)]


class _Cutter:
    def __init__(self, text: str, html_mode: bool, min_chars: int) -> None:
        self.text = text
        self.min_chars = min_chars
        self.atomic = [(m.start(), m.end()) for m in _ATOMIC_RE.finditer(text)]
        self.tiers = [
            _block_boundaries(text, html_mode),
            [m.end() for m in _SENTENCE_RE.finditer(text)],
            [m.end() for m in _WHITESPACE_RE.finditer(text)],
        ]

    def _enclosing_atomic(self, pos: int) -> tuple[int, int] | None:
        for start, end in self.atomic:
            if start < pos < end:
                return start, end
            if start >= pos:
                break
        return None

    def _best_in(self, boundaries: list[int], start: int, end: int) -> int | None:
        i = bisect.bisect_right(boundaries, end) - 1
        while i >= 0 and boundaries[i] > start:
            if self._enclosing_atomic(boundaries[i]) is None:
                return boundaries[i]
            i -= 1
        return None

    def cut(self, start: int, limit: int) -> int:
        window_end = start + limit
        furthest = None
        for boundaries in self.tiers:
            best = self._best_in(boundaries, start, window_end)
            if best is None:
                continue
            if best - start >= self.min_chars:
                return best
            if furthest is None or best > furthest:
                furthest = best
        if furthest is not None:
            return furthest

        span = self._enclosing_atomic(window_end)
        if span is None:
            return window_end
        span_start, span_end = span
        return span_start if span_start > start else span_end


def chunk_text(text: str, max_chars: int | None = None, is_html: bool | None = None) -> list[Chunk]:
    if not text:
        return []

    limit = _coerce_limit(max_chars)
    html_mode = is_html if is_html is not None else is_likely_html(text)
    if len(text) <= limit:
        return [Chunk(index=0, text=text, is_html_like=html_mode)]

    if html_mode and _LIST_RE.search(text):
        limit = min(limit, max(settings.list_chunk_chars, settings.min_chunk_chars))

    cutter = _Cutter(text, html_mode, min(settings.min_chunk_chars, limit))
    pieces: list[str] = []
    start = 0
    while len(text) - start > limit:
        end = cutter.cut(start, limit)
        pieces.append(text[start:end])
        start = end
    pieces.append(text[start:])

    log.debug("text chunked", mode="html" if html_mode else "plain", length=len(text), limit=limit, chunks=len(pieces))
    return [Chunk(index=i, text=piece, is_html_like=html_mode) for i, piece in enumerate(pieces)]
