import re
from collections import Counter

import structlog

from shop_translator.guards import BRAND_WORDS, strip_non_linguistic
from shop_translator.protector import TOKEN_RE
from shop_translator.schemas import QualityCategory, QualityRecord, QualityVerdict

log = structlog.get_logger(__name__)

SHORT_TEXT_MAX = 15
SAME_AS_ORIGINAL_MIN = 20
REMNANT_RATIO = 0.6
REMNANT_MIN_WORDS = 3
MAX_LENGTH_RATIO = 3.0

CJK_LANGS = {"zh", "ja", "ko"}

TARGET_SCRIPTS = {
    "zh": re.compile(r"[一-鿿]"),
    "ja": re.compile(r"[぀-ヿ一-鿿]"),
    "ko": re.compile(r"[가-힯]"),
    "ar": re.compile(r"[؀-ۿ]"),
    "fa": re.compile(r"[؀-ۿ]"),
    "ru": re.compile(r"[Ѐ-ӿ]"),
    "uk": re.compile(r"[Ѐ-ӿ]"),
    "bg": re.compile(r"[Ѐ-ӿ]"),
    "th": re.compile(r"[฀-๿]"),
    "he": re.compile(r"[֐-׿]"),
    "el": re.compile(r"[Ͱ-Ͽ]"),
    "hi": re.compile(r"[ऀ-ॿ]"),
}

INCOMPLETE_PATTERNS = (
    re.compile(r"^\s*(Here is|Here's|I'll translate|The translation|Translation:)", re.IGNORECASE),
    re.compile(r"\[(continued|more)\]", re.IGNORECASE),
    re.compile(r"TEXT_TOO_LONG"),
)
_TRAILING_ELLIPSIS_RE = re.compile(r"(\.{3}|…)\s*$")

BOILERPLATE_RE = re.compile(
    r"\b(as an ai\b|i am an ai\b|i'm an ai\b|as a language model)|translator'?s? note|\(note:|^\s*note:",
    re.IGNORECASE | re.MULTILINE,
)

PRODUCT_KEYWORDS = ("product", "size", "color", "material", "shipping", "price", "warranty", "specification")

_TAG_NAME_RE = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9]*)\b[^>]*>")
_TEMPLATE_RE = re.compile(r"\{\{.*?\}\}|\{%.*?%\}", re.DOTALL)
_WORD_RE = re.compile(r"\b[a-zA-Z]{4,}\b")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?。！？])\s*")


def _lang(locale: str | None) -> str:
    return (locale or "").split("-")[0].lower()


def _record(category: QualityCategory, code: str, message: str, severity: int, retryable: bool, **context) -> QualityRecord:
    return QualityRecord(
        category=category, code=code, message=message, severity=severity, retryable=retryable, context=context
    )


def _check_placeholders(original: str, translated: str) -> list[QualityRecord]:
    records = []
    leftovers = set(TOKEN_RE.findall(translated)) - set(TOKEN_RE.findall(original))
    if leftovers:
        records.append(
            _record(
                QualityCategory.VALIDATION,
                "LEFTOVER_PROTECTED_TOKEN",
                "protection tokens leaked into the output",
                3,
                False,
                tokens=sorted(leftovers)[:5],
            )
        )

    expected = Counter(_TEMPLATE_RE.findall(original))
    found = Counter(_TEMPLATE_RE.findall(translated))
    missing = [p for p, n in expected.items() if found[p] < n]
    if missing:
        records.append(
            _record(
                QualityCategory.COMPLETENESS,
                "MISSING_TEMPLATE_PLACEHOLDER",
                "template placeholders were altered or dropped",
                3,
                True,
                missing=missing[:5],
            )
        )
    return records


def _check_tags(original: str, translated: str) -> list[QualityRecord]:
    expected = Counter(m.group(1) + m.group(2).lower() for m in _TAG_NAME_RE.finditer(original))
    found = Counter(m.group(1) + m.group(2).lower() for m in _TAG_NAME_RE.finditer(translated))
    if expected == found:
        return []
    return [
        _record(
            QualityCategory.COMPLETENESS,
            "HTML_TAG_MISMATCH",
            "HTML tag structure differs from the source",
            2,
            True,
            missing=sorted((expected - found).elements())[:10],
            unexpected=sorted((found - expected).elements())[:10],
        )
    ]


def _min_length_ratio(original: str, target_lang: str) -> tuple[float, str]:
    cjk = target_lang in CJK_LANGS
    if "<" in original and _TAG_NAME_RE.search(original):
        return 0.05, "html"
    lowered = original.lower()
    if any(k in lowered for k in PRODUCT_KEYWORDS):
        return (0.1 if cjk else 0.15), "product"
    return (0.2 if cjk else 0.3), "text"


def _check_length(original: str, translated: str, target_lang: str) -> list[QualityRecord]:
    ratio = len(translated) / max(len(original), 1)
    min_ratio, content_type = _min_length_ratio(original, target_lang)
    if ratio < min_ratio:
        return [
            _record(
                QualityCategory.COMPLETENESS,
                "LENGTH_TOO_SHORT",
                f"translation is {ratio:.0%} of the source length ({content_type} minimum {min_ratio:.0%})",
                2,
                True,
                ratio=round(ratio, 3),
                min_ratio=min_ratio,
                content_type=content_type,
            )
        ]
    if ratio > MAX_LENGTH_RATIO:
        return [
            _record(
                QualityCategory.QUALITY,
                "TRANSLATION_TOO_LONG",
                f"translation is {ratio:.1f}x the source length",
                1,
                False,
                ratio=round(ratio, 3),
            )
        ]
    return []


def _check_incomplete(original: str, translated: str) -> list[QualityRecord]:
    for pattern in INCOMPLETE_PATTERNS:
        if pattern.search(translated) and not pattern.search(original):
            return [
                _record(
                    QualityCategory.COMPLETENESS,
                    "INCOMPLETE_PATTERN",
                    f"incomplete translation marker: {pattern.pattern}",
                    2,
                    True,
                )
            ]
    if _TRAILING_ELLIPSIS_RE.search(translated) and not _TRAILING_ELLIPSIS_RE.search(original):
        return [
            _record(
                QualityCategory.COMPLETENESS,
                "INCOMPLETE_PATTERN",
                "translation ends with an ellipsis the source does not have",
                2,
                True,
            )
        ]
    return []


def _check_script(original_plain: str, translated_plain: str, target_lang: str) -> list[QualityRecord]:
    script = TARGET_SCRIPTS.get(target_lang)
    if script is None or not re.search(r"[^\W\d_]", original_plain):
        return []
    if script.search(translated_plain):
        return []
    return [
        _record(
            QualityCategory.QUALITY,
            "MISSING_TARGET_SCRIPT",
            f"translation has no {target_lang} script characters",
            3,
            True,
            target_language=target_lang,
            sample=translated_plain[:100],
        )
    ]


def _check_remnants(original_plain: str, translated_plain: str) -> list[QualityRecord]:
    source_words = [w.lower() for w in _WORD_RE.findall(original_plain) if w.lower() not in BRAND_WORDS]
    if len(source_words) < REMNANT_MIN_WORDS:
        return []
    translated_words = {w.lower() for w in _WORD_RE.findall(translated_plain)}
    surviving = [w for w in source_words if w in translated_words]
    ratio = len(surviving) / len(source_words)
    if ratio <= REMNANT_RATIO:
        return []
    return [
        _record(
            QualityCategory.QUALITY,
            "UNTRANSLATED_REMNANTS",
            f"{ratio:.0%} of source words remain untranslated",
            2,
            True,
            ratio=round(ratio, 3),
            words=sorted(set(surviving))[:10],
        )
    ]


def _duplicates(plain: str) -> Counter:
    sentences = [s.strip().lower() for s in _SENTENCE_SPLIT_RE.split(plain)]
    counts = Counter(s for s in sentences if len(s) >= 20)
    return Counter({s: n - 1 for s, n in counts.items() if n > 1})


def _check_artifacts(original: str, original_plain: str, translated_plain: str) -> list[QualityRecord]:
    records = []
    if BOILERPLATE_RE.search(translated_plain) and not BOILERPLATE_RE.search(original):
        records.append(
            _record(
                QualityCategory.QUALITY,
                "BOILERPLATE_ARTIFACT",
                "model commentary found in the translation",
                2,
                True,
            )
        )
    extra = _duplicates(translated_plain) - _duplicates(original_plain)
    if extra:
        records.append(
            _record(
                QualityCategory.QUALITY,
                "DUPLICATED_SEGMENT",
                "a sentence is repeated in the translation",
                2,
                True,
                segments=list(extra)[:3],
            )
        )
    return records


def assess(
    original: str,
    translated: str,
    target_locale: str,
    source_locale: str | None = None,
) -> QualityVerdict:
    if not translated or not translated.strip():
        record = _record(QualityCategory.VALIDATION, "EMPTY_TRANSLATION", "translation is empty", 3, True)
        return QualityVerdict(is_valid=False, records=[record])

    target_lang = _lang(target_locale)
    same_language = source_locale is not None and _lang(source_locale) == target_lang
    original_plain = " ".join(strip_non_linguistic(original).split())
    translated_plain = " ".join(strip_non_linguistic(translated).split())

    records: list[QualityRecord] = []
    records += _check_placeholders(original, translated)
    records += _check_tags(original, translated)

    unchanged = translated.strip() == original.strip()
    if unchanged and len(original.strip()) > SAME_AS_ORIGINAL_MIN and not same_language:
        records.append(
            _record(QualityCategory.QUALITY, "SAME_AS_ORIGINAL", "translation equals the source text", 2, True)
        )

    if len(original.strip()) > SHORT_TEXT_MAX:
        records += _check_length(original, translated, target_lang)
        if not unchanged and not same_language:
            records += _check_remnants(original_plain, translated_plain)

    records += _check_incomplete(original, translated)
    if not same_language:
        records += _check_script(original_plain, translated_plain, target_lang)
    records += _check_artifacts(original, original_plain, translated_plain)

    is_valid = not any(r.severity >= 2 for r in records)
    if records:
        log.debug(
            "quality assessed",
            target_locale=target_locale,
            is_valid=is_valid,
            codes=[r.code for r in records],
        )
    return QualityVerdict(is_valid=is_valid, records=records)
