"""Masking of non-linguistic markup before text leaves for the provider.

Script/style blocks, comments, pre/code blocks, style/href/src attribute values,
aria attributes and media elements are swapped for ``__PROTECTED_<KIND>_<n>__``
tokens. Liquid ``{{ }}`` / ``{% %}`` placeholders stay in the visible text.
"""

import re
from collections.abc import Callable

import structlog

from shop_translator.schemas import MaskedText

log = structlog.get_logger(__name__)

TOKEN_PREFIX = "__PROTECTED_"
TOKEN_RE = re.compile(r"__PROTECTED_[A-Z]+(?:_[A-Z]+)*_\d+__")
LONE_TOKEN_RE = re.compile(r"^__PROTECTED_[A-Z_]+?(?:_\d+)?__$")

_BLOCK_PATTERNS = (
    ("STYLE_BLOCK", re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)),
    ("SCRIPT_BLOCK", re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)),
    ("COMMENT", re.compile(r"<!--.*?-->", re.DOTALL)),
    ("PRE", re.compile(r"<pre\b[^>]*>.*?</pre\s*>", re.IGNORECASE | re.DOTALL)),
    ("CODE", re.compile(r"<code\b[^>]*>.*?</code\s*>", re.IGNORECASE | re.DOTALL)),
)

_OPEN_TAG_RE = re.compile(r"<([a-zA-Z][a-zA-Z0-9-]*)([^>]*)>")
_STYLE_ATTR_RE = re.compile(r"""((?<![\w-])style\s*=\s*)(["'])(.*?)\2""", re.IGNORECASE | re.DOTALL)
_URL_ATTR_RE = re.compile(r"""((?<![\w-])(?:href|src)\s*=\s*)(["'])(.*?)\2""", re.IGNORECASE | re.DOTALL)
_ARIA_ATTR_RE = re.compile(r"""(?<![\w-])aria-[a-zA-Z0-9-]+\s*=\s*(["']).*?\1""", re.IGNORECASE | re.DOTALL)

_MEDIA_PATTERNS = (
    ("IMG", re.compile(r"<img\b[^>]*>", re.IGNORECASE)),
    ("MEDIA_TAG", re.compile(r"<(?:source|track|embed)\b[^>]*>", re.IGNORECASE)),
)


class _Masker:
    def __init__(self) -> None:
        self.token_map: dict[str, str] = {}
        self._counter = 0

    def mask(self, kind: str, fragment: str) -> str:
        token = f"{TOKEN_PREFIX}{kind}_{self._counter}__"
        self._counter += 1
        self.token_map[token] = fragment
        return token

    def substituter(self, kind: str) -> Callable[[re.Match], str]:
        return lambda m: self.mask(kind, m.group(0))

    def attribute_value(self, kind: str) -> Callable[[re.Match], str]:
        def _sub(m: re.Match) -> str:
            if not m.group(3):
                return m.group(0)
            return f"{m.group(1)}{m.group(2)}{self.mask(kind, m.group(3))}{m.group(2)}"

        return _sub

    def open_tag(self, m: re.Match) -> str:
        name, attrs = m.group(1), m.group(2)
        if not attrs.strip():
            return m.group(0)
        attrs = _STYLE_ATTR_RE.sub(self.attribute_value("STYLE_ATTR"), attrs)
        attrs = _URL_ATTR_RE.sub(self.attribute_value("URL"), attrs)
        attrs = _ARIA_ATTR_RE.sub(self.substituter("ARIA"), attrs)
        return f"<{name}{attrs}>"


def protect(text: str) -> MaskedText:
    if "<" not in text:
        return MaskedText(text=text)
    if TOKEN_PREFIX in text:
        # already carries tokens; masking again could collide with them
        log.debug("protect skipped, text already tokenised", length=len(text))
        return MaskedText(text=text)

    masker = _Masker()
    masked = text
    for kind, pattern in _BLOCK_PATTERNS:
        masked = pattern.sub(masker.substituter(kind), masked)
    masked = _OPEN_TAG_RE.sub(masker.open_tag, masked)
    for kind, pattern in _MEDIA_PATTERNS:
        masked = pattern.sub(masker.substituter(kind), masked)

    if not masker.token_map:
        return MaskedText(text=text)

    log.debug(
        "markup protected",
        original_length=len(text),
        protected_length=len(masked),
        token_count=len(masker.token_map),
    )
    return MaskedText(text=masked, token_map=masker.token_map)


def restore(text: str, token_map: dict[str, str]) -> str:
    if not token_map:
        return text

    # left to right, so literal text touching a token's trailing "__" is never
    # read as part of another token; only fragments are rescanned, since they
    # may embed other tokens (an <img> whose src was masked first)
    def expand(fragment: str, depth: int) -> str:
        if depth > len(token_map):
            return fragment

        def sub(m: re.Match) -> str:
            token = m.group(0)
            if token not in token_map:
                return token
            return expand(token_map[token], depth + 1)

        return TOKEN_RE.sub(sub, fragment)

    restored = expand(text, 0)

    missing = [t for t in token_map if t not in text and not _nested_in(t, token_map)]
    if missing:
        log.debug("tokens missing from restored text", missing=missing[:5], missing_count=len(missing))
    return restored


def _nested_in(token: str, token_map: dict[str, str]) -> bool:
    return any(token in fragment for fragment in token_map.values())


def tokens_in(text: str) -> set[str]:
    return set(TOKEN_RE.findall(text))
