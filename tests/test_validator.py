import pytest

from shop_translator.validator import assess


def _codes(verdict):
    return {r.code for r in verdict.records}


def test_clean_translation_is_valid():
    verdict = assess("Waterproof hiking jacket for cold days", "Veste de randonnée imperméable pour les jours froids", "fr")
    assert verdict.is_valid is True
    assert verdict.records == []
    assert verdict.retryable is False


def test_empty_translation_is_critical():
    verdict = assess("Hello there", "  ", "de")
    assert verdict.is_valid is False
    assert _codes(verdict) == {"EMPTY_TRANSLATION"}
    assert verdict.records[0].severity == 3
    assert verdict.retryable is True


def test_same_as_original_for_long_text():
    text = "This jacket keeps you dry all day long."
    verdict = assess(text, text, "de", "en")
    assert "SAME_AS_ORIGINAL" in _codes(verdict)
    assert verdict.is_valid is False


def test_short_identical_text_is_accepted():
    assert assess("OK", "OK", "de").is_valid is True


def test_same_language_is_not_flagged():
    text = "This jacket keeps you dry all day long."
    assert "SAME_AS_ORIGINAL" not in _codes(assess(text, text, "en-GB", "en"))


def test_length_too_short():
    verdict = assess("A very long product description that goes on and on about fabric", "Kurz", "de")
    assert "LENGTH_TOO_SHORT" in _codes(verdict)


def test_translation_too_long_is_warning_only():
    verdict = assess("Soft cotton tee shirt", "Weiches Baumwoll-T-Shirt " * 5, "de")
    assert "TRANSLATION_TOO_LONG" in _codes(verdict)
    warning = next(r for r in verdict.records if r.code == "TRANSLATION_TOO_LONG")
    assert warning.severity == 1
    assert warning.retryable is False


@pytest.mark.parametrize(
    "translated",
    [
        "Here is the translation: Ein leichter Regenmantel",
        "Ein leichter Regenmantel [continued]",
        "Ein leichter Regenmantel für...",
    ],
)
def test_incomplete_patterns(translated):
    verdict = assess("A lightweight raincoat for spring", translated, "de")
    assert "INCOMPLETE_PATTERN" in _codes(verdict)


def test_html_tag_mismatch():
    verdict = assess("<p>Soft <b>cotton</b> shirt</p>", "<p>Weiches Baumwollhemd</p>", "de")
    assert "HTML_TAG_MISMATCH" in _codes(verdict)


def test_missing_template_placeholder():
    verdict = assess("Price: {{ product.price }} USD", "Preis: {{ produkt.preis }} USD", "de")
    assert "MISSING_TEMPLATE_PLACEHOLDER" in _codes(verdict)
    assert verdict.is_valid is False


def test_leftover_token_is_not_retryable():
    verdict = assess("Read more about us", "Lesen __PROTECTED_URL_3__ über uns", "de")
    record = next(r for r in verdict.records if r.code == "LEFTOVER_PROTECTED_TOKEN")
    assert record.severity == 3
    assert record.retryable is False


def test_missing_target_script():
    verdict = assess("Lightweight down jacket", "Lightweight down jacket translated", "ja")
    assert "MISSING_TARGET_SCRIPT" in _codes(verdict)
    assert assess("Lightweight down jacket", "軽量ダウンジャケット", "ja").is_valid is True


def test_untranslated_remnants():
    verdict = assess(
        "Premium leather wallet with twelve card slots",
        "Premium leather wallet with twelve card slots und mehr",
        "de",
    )
    assert "UNTRANSLATED_REMNANTS" in _codes(verdict)


def test_boilerplate_artifact():
    verdict = assess("Cozy wool socks", "As an AI language model, gemütliche Wollsocken", "de")
    assert "BOILERPLATE_ARTIFACT" in _codes(verdict)


def test_duplicated_segment():
    verdict = assess(
        "Our socks are warm. They last for years.",
        "Unsere Socken sind sehr warm. Unsere Socken sind sehr warm. Sie halten jahrelang.",
        "de",
    )
    assert "DUPLICATED_SEGMENT" in _codes(verdict)
