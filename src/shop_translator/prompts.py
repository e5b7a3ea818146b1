from shop_translator.schemas import ResourceContext

LANGUAGE_NAMES = {
    "en": "English",
    "zh": "Chinese",
    "zh-CN": "Simplified Chinese",
    "zh-TW": "Traditional Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "fr": "French",
    "de": "German",
    "es": "Spanish",
    "pt": "Portuguese",
    "pt-BR": "Brazilian Portuguese",
    "ru": "Russian",
    "it": "Italian",
    "nl": "Dutch",
    "pl": "Polish",
    "tr": "Turkish",
    "ar": "Arabic",
    "he": "Hebrew",
    "th": "Thai",
    "hi": "Hindi",
    "vi": "Vietnamese",
    "id": "Indonesian",
}

_PROTECTION_RULES = (
    "Rules:\n"
    "- Never translate, change, remove or reorder placeholders that start with __PROTECTED_ and end with __.\n"
    "- Do not create __PROTECTED_ placeholders that are not in the input.\n"
    "- Keep Liquid placeholders such as {{ product.price }} and {% if %} exactly as they are.\n"
    "- Keep HTML tags, attribute names and their order unchanged; translate only visible text.\n"
    "- Keep brand names and product model numbers unchanged.\n"
    "- Return only the translated text, with no explanations or notes."
)


def language_name(locale: str | None) -> str:
    if not locale:
        return "the source language"
    return LANGUAGE_NAMES.get(locale) or LANGUAGE_NAMES.get(locale.split("-")[0]) or locale


def _direction(target_locale: str, source_locale: str | None) -> str:
    target = language_name(target_locale)
    if source_locale:
        return f"Translate from {language_name(source_locale)} to {target}."
    return f"Translate to {target}."


def build_simple_prompt(target_locale: str, source_locale: str | None = None) -> str:
    return (
        f"{_direction(target_locale, source_locale)} Preserve meaning, numbers, symbols and HTML tags. "
        "Return only translated text."
    )


def _describe_context(context: ResourceContext | None) -> str:
    if context is None or context.is_empty():
        return ""
    parts = []
    if context.resource_type:
        parts.append(f"resource type: {context.resource_type}")
    if context.section_type:
        parts.append(f"theme section: {context.section_type}")
    if context.field_type:
        parts.append(f"field: {context.field_type}")
    if not parts:
        return ""
    return "The text is storefront content (" + ", ".join(parts) + ").\n"


def build_enhanced_prompt(
    target_locale: str,
    context: ResourceContext | None = None,
    source_locale: str | None = None,
) -> str:
    target = language_name(target_locale)
    return (
        "You are a professional e-commerce translator.\n"
        f"{_direction(target_locale, source_locale)} Translate the complete text into natural {target}; "
        "do not leave English words behind except brand names and model numbers. "
        "Keep paragraphs, line breaks and the professional tone of the original.\n"
        f"{_describe_context(context)}"
        f"{_PROTECTION_RULES}"
    )


def build_long_text_prompt(
    target_locale: str,
    context: ResourceContext | None = None,
    source_locale: str | None = None,
    terminology: tuple[str, ...] = (),
    previous_translation: str | None = None,
) -> str:
    prompt = (
        build_enhanced_prompt(target_locale, context, source_locale)
        + "\nThe input is one part of a longer document. Translate only this part and do not summarise it."
    )
    if terminology:
        prompt += "\nKeep these terms consistent (do not translate brand names): " + ", ".join(terminology)
    if previous_translation:
        prompt += f"\nThe previous part ended with this translation, continue in the same style:\n{previous_translation}"
    return prompt


def build_placeholder_retry_prompt(target_locale: str) -> str:
    return (
        f"Translate the text into {language_name(target_locale)}. "
        "Copy every __PROTECTED_...__ placeholder exactly once, unchanged, in its original position. "
        "Return only the translated text."
    )
