import math
import re
from collections.abc import Iterable

from shop_translator.config import settings
from shop_translator.protector import TOKEN_RE

_TAG_RE = re.compile(r"<[^>]+>")


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text)


def effective_chars(text: str) -> int:
    return len(strip_html(TOKEN_RE.sub("", text)).strip())


def calculate_credits(chars: int) -> int:
    if chars <= 0:
        return settings.min_credit_charge
    return max(math.ceil(chars / settings.chars_per_credit), settings.min_credit_charge)


def estimate_credits(source_text: str) -> int:
    # raw length bounds the billable prose from above
    return calculate_credits(len(source_text))


def actual_credits(translated_sources: Iterable[str]) -> int:
    total = sum(effective_chars(t) for t in translated_sources)
    if total <= 0:
        return 0
    return calculate_credits(total)
