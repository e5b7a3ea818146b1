import json
import re
import threading
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

import structlog

from shop_translator.config import settings
from shop_translator.errors import ConfigurationFault
from shop_translator.guards import is_brand_literal
from shop_translator.schemas import EligibilityReason, EligibilityVerdict, FieldEvaluation, ResourceContext

log = structlog.get_logger(__name__)

TRANSLATABLE_KEY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(.+[._])?(title|heading|subheading|subtitle)$",
        r"^(.+[._])?(description|content|text|body|paragraph)$",
        r"^(.+[._])?(button|cta|call_to_action).*?(text|label)$",
        r"^(.+[._])?(label|placeholder|helper|hint)$",
        r"^(.+[._])?(announcement|alert|banner).*?(text|message)$",
        r"^(.+[._])?(promo|promotion|offer|deal).*?(text|title)$",
        r"^(.+[._])?(cart|checkout).*?(text|label|message)$",
        r"^(.+[._])?(newsletter|contact|signup|about).*?(text|description|heading)$",
        r"^(.+[._])?(header|footer|section).*?(text|title)$",
        r"^(.+[._])?(testimonial|review).*?(text|quote)$",
        r"^(.+[._])?(faq|question|answer)$",
        r"^(.+[._])?(blog|article|post|news).*?(text|title|excerpt)$",
        r"^(.+[._])?(author|date|category|tag).*?(text|label)$",
        r"^(.+[._])?(social|share|follow|like).*?(text|label)$",
        r"^(.+[._])?(empty|no_results|not_found).*?(text|message)$",
        r"^(.+[._])?(countdown|timer|progress).*?(text|label)$",
        r"^(.+[._])?(collection_list|product_grid|featured_product).*?(text|heading|subheading)$",
    )
]

TECHNICAL_KEY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(.+\.)?(id|key|handle|slug|type|kind|variant)$",
        r"_handle$",
        r"^(.+\.)?(class|classname|style|css|scss)$",
        r"^(.+\.)?(asset|assets|file|filename|image|icon)$",
        r"^(.+\.)?(color|colour|background|bg|font|font_size)$",
        r"^(.+\.)?(size|width|height|margin|padding|spacing)$",
        r"^(.+\.)?(position|align|alignment|justify|display)$",
        r"^(.+\.)?(border|radius|shadow|opacity|z_index)$",
        r"^(.+\.)?(enabled|disabled|active|inactive|visible|hidden)$",
        r"^(.+\.)?(required|optional|default|min|max|limit)$",
        r"^(.+\.)?(setting|settings|config|configuration|option|options)$",
        r"^(.+\.)?(data|value|values|count|number|amount)$",
        r"^(.+\.)?(condition|conditions|rule|rules|filter|filters)$",
        r"^(.+\.)?(template|templates|layout|layouts|schema)$",
        r"^(.+\.)?(api|endpoint|method|param|params|query)$",
        r"^(.+\.)?(script|scripts|code|function|callback)$",
        r"^(.+\.)?(metafield|metafields|namespace|collection_id|product_id)$",
        r"^(.+\.)?(vendor|sku|barcode|inventory|variant_id)$",
        r"^(.+\.)?(checksum|digest|hash|etag)$",
    )
]

_URL_SEGMENT_RE = re.compile(r"^(url|href|src|path|endpoint|route|link)$", re.IGNORECASE)
_HASH_VALUE_RE = re.compile(r"^(?:[0-9a-f]{32,}|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$", re.IGNORECASE)
_TEMPLATE_RE = re.compile(r"\{\{.*?\}\}|\{%.*?%\}", re.DOTALL)
_NUMERIC_OR_COLOR_RE = re.compile(r"^(?:\d+|#[0-9A-Fa-f]{3}|#[0-9A-Fa-f]{6})$")
_FILE_NAME_RE = re.compile(r"^\w+\.(jpg|jpeg|png|gif|svg|webp|css|js)$", re.IGNORECASE)
_BOOLEAN_LITERAL_RE = re.compile(r"^(true|false|null|undefined|none)$", re.IGNORECASE)

THEME_PLACEHOLDER_COPY = frozenset(
    {"Your content", "Paragraph", "Image with text", "Subheading", "Easy Setup", "Item", "Content", "Title", "Description"}
)


def normalize_schema_key(key: Any) -> str | None:
    if not key:
        return None
    normalized = re.sub(r"[^a-z0-9]+", "", str(key).strip().lower().removeprefix("t:"))
    return normalized or None


def is_url_field(key: str) -> bool:
    if not key:
        return False
    last = re.split(r"[._]", key)[-1]
    if _URL_SEGMENT_RE.match(last):
        return True
    return key.lower().endswith("_url")


class SchemaCache:
    """Section schemas keyed by normalised type, name and file stem.

    Loaded once on first lookup. A load failure leaves the cache empty and
    marked unavailable; callers then rely on key patterns alone.
    """

    def __init__(self, schema_dir: str | Path | None = None) -> None:
        self.schema_dir = Path(schema_dir or settings.theme_schema_dir)
        self._schemas: dict[str, dict] | None = None
        self._lock = threading.Lock()
        self.available = False

    def _load(self) -> dict[str, dict]:
        if self._schemas is not None:
            return self._schemas
        with self._lock:
            if self._schemas is not None:
                return self._schemas
            schemas: dict[str, dict] = {}
            sections_dir = self.schema_dir / "sections"
            try:
                if not sections_dir.is_dir():
                    raise ConfigurationFault(f"schema directory missing: {sections_dir}")
                for path in sorted(sections_dir.glob("*.json")):
                    schema = json.loads(path.read_text(encoding="utf-8"))
                    for key in (schema.get("type"), schema.get("name"), path.stem):
                        normalized = normalize_schema_key(key)
                        if normalized:
                            schemas[normalized] = schema
                self.available = True
            except (OSError, ValueError, AttributeError, ConfigurationFault) as exc:
                log.warning("section schemas unavailable, using key patterns only", error=str(exc))
                schemas = {}
                self.available = False
            self._schemas = schemas
            log.debug("section schemas loaded", count=len(schemas), schema_dir=str(self.schema_dir))
            return schemas

    def get_section(self, section_type: str | None) -> dict | None:
        normalized = normalize_schema_key(section_type)
        if not normalized:
            return None
        return self._load().get(normalized)

    def lookup(self, section_type: str | None, field_key: str) -> bool | None:
        """Schema ``translate`` flag for ``sections.<id>[.blocks.<id>].settings.<field>`` keys."""
        schema = self.get_section(section_type)
        if not schema:
            return None
        remainder = re.sub(r"^sections\.[^.]+\.?", "", field_key)
        if not remainder or remainder == field_key:
            return None
        m = re.search(r"settings\.([^.]+)$", remainder)
        if not m:
            return None
        field_id = m.group(1)

        if "blocks" in remainder:
            candidates = [s for block in schema.get("blocks") or [] for s in block.get("settings") or []]
        else:
            candidates = schema.get("settings") or []
        for setting in candidates:
            if setting.get("id") == field_id and "translate" in setting:
                return bool(setting["translate"])
        return None


_schema_cache: SchemaCache | None = None
_schema_cache_lock = threading.Lock()


def get_schema_cache() -> SchemaCache:
    global _schema_cache
    with _schema_cache_lock:
        if _schema_cache is None:
            _schema_cache = SchemaCache()
        return _schema_cache


def reset_schema_cache() -> None:
    global _schema_cache
    with _schema_cache_lock:
        _schema_cache = None


def _skip(reason: EligibilityReason) -> EligibilityVerdict:
    return EligibilityVerdict(should_translate=False, reason=reason)


_TRANSLATE = EligibilityVerdict(should_translate=True)


class FieldEligibilityFilter:
    def __init__(self, schema_cache: SchemaCache | None = None) -> None:
        self.schema_cache = schema_cache if schema_cache is not None else get_schema_cache()

    def evaluate(self, field_key: str, field_value: Any, context: ResourceContext | None = None) -> EligibilityVerdict:
        context = context or ResourceContext()
        key = field_key or ""

        schema_flag = self.schema_cache.lookup(context.section_type, key)
        if schema_flag is True:
            return _TRANSLATE
        if schema_flag is False:
            return _skip(EligibilityReason.SCHEMA_FLAGGED)

        if is_url_field(key):
            return _skip(EligibilityReason.URL_FIELD)
        if not isinstance(field_value, str) or not field_value.strip():
            return _skip(EligibilityReason.EMPTY_OR_NON_TEXT)
        if any(p.search(key) for p in TECHNICAL_KEY_PATTERNS):
            return _skip(EligibilityReason.TECHNICAL_FIELD)

        value = field_value.strip()
        if _HASH_VALUE_RE.match(value):
            return _skip(EligibilityReason.TECHNICAL_FIELD)
        if ("{{" in value or "{%" in value) and not _TEMPLATE_RE.sub("", value).strip():
            return _skip(EligibilityReason.TEMPLATE_SYNTAX)
        if _NUMERIC_OR_COLOR_RE.match(value):
            return _skip(EligibilityReason.NUMERIC_OR_COLOR)
        if re.match(r"^https?://", value) and " " not in value:
            return _skip(EligibilityReason.URL_FIELD)

        if any(p.search(key) for p in TRANSLATABLE_KEY_PATTERNS):
            return _TRANSLATE
        if value in THEME_PLACEHOLDER_COPY:
            return _TRANSLATE

        if len(value) >= 2 and re.search(r"[^\W\d_]", value):
            if is_brand_literal(value):
                return _skip(EligibilityReason.BRAND_NAME)
            if len(value.split()) > 1:
                return _TRANSLATE
            if len(value) >= 4 and re.match(r"^[A-Z][a-z]+", value):
                return _TRANSLATE
            if (
                len(value) <= 20
                and not re.match(r"^[0-9#.]", value)
                and not _FILE_NAME_RE.match(value)
                and not _BOOLEAN_LITERAL_RE.match(value)
            ):
                return _TRANSLATE

        return _skip(EligibilityReason.PATTERN_MISMATCH)

    def evaluate_batch(
        self,
        fields: Iterable[Mapping[str, Any] | Any],
        base_context: ResourceContext | None = None,
        derive_context: Callable[[Mapping[str, Any]], ResourceContext | None] | None = None,
    ) -> list[FieldEvaluation]:
        items = [f if isinstance(f, Mapping) else {"value": f} for f in fields]
        base = base_context or ResourceContext()
        batch_size = settings.max_field_batch_size
        if len(items) > batch_size:
            log.warning(
                "field batch over limit, evaluating in slices",
                fields=len(items),
                batch_size=batch_size,
                slices=-(-len(items) // batch_size),
            )

        results: list[FieldEvaluation] = []
        for offset in range(0, len(items), batch_size):
            for index, item in enumerate(items[offset : offset + batch_size], start=offset):
                key = item.get("key") or ""
                derived = None
                if derive_context is not None:
                    try:
                        derived = derive_context(item)
                    except Exception as exc:
                        log.error("derive_context failed", key=key, field_index=index, error=str(exc))
                own = item.get("context")
                context = base.merged(derived if isinstance(derived, ResourceContext) else None)
                context = context.merged(own if isinstance(own, ResourceContext) else None)

                try:
                    verdict = self.evaluate(key, item.get("value"), context)
                except Exception as exc:
                    log.error("eligibility check failed, treating field as translatable", key=key, error=str(exc))
                    verdict = _TRANSLATE
                results.append(FieldEvaluation(key=key, value=item.get("value"), verdict=verdict, context=context))
        return results
