import json

import pytest

from shop_translator import config
from shop_translator.eligibility import FieldEligibilityFilter, SchemaCache, get_schema_cache
from shop_translator.schemas import EligibilityReason, ResourceContext


def _write_schema(schema_dir, name, schema):
    (schema_dir / "sections" / f"{name}.json").write_text(json.dumps(schema), encoding="utf-8")


@pytest.fixture
def hero_schema(schema_dir):
    _write_schema(
        schema_dir,
        "hero-banner",
        {
            "type": "hero-banner",
            "name": "Hero banner",
            "settings": [
                {"id": "button_url", "translate": True},
                {"id": "heading", "translate": False},
            ],
            "blocks": [{"type": "slide", "settings": [{"id": "caption_code", "translate": True}]}],
        },
    )


@pytest.mark.parametrize("value", ["https://x.test", "Shop now", 42, None, ""])
def test_url_key_is_never_translated(value):
    verdict = FieldEligibilityFilter().evaluate("sections.hero.button_url", value)
    assert verdict.should_translate is False
    assert verdict.reason == EligibilityReason.URL_FIELD


@pytest.mark.parametrize(
    "key,value,reason",
    [
        ("sections.hero.settings.title", None, EligibilityReason.EMPTY_OR_NON_TEXT),
        ("sections.hero.settings.title", "   ", EligibilityReason.EMPTY_OR_NON_TEXT),
        ("sections.hero.settings.title", ["a"], EligibilityReason.EMPTY_OR_NON_TEXT),
        ("sections.hero.handle", "summer-sale", EligibilityReason.TECHNICAL_FIELD),
        ("sections.hero.settings.color", "#fff", EligibilityReason.TECHNICAL_FIELD),
        ("sections.hero.settings.title", "{{ section.settings.heading }}", EligibilityReason.TEMPLATE_SYNTAX),
        ("sections.hero.settings.title", "1200", EligibilityReason.NUMERIC_OR_COLOR),
        ("sections.hero.settings.title", "#a1b2c3", EligibilityReason.NUMERIC_OR_COLOR),
        ("sections.hero.settings.title", "https://cdn.test/a.png", EligibilityReason.URL_FIELD),
        ("sections.hero.settings.title", "d41d8cd98f00b204e9800998ecf8427e", EligibilityReason.TECHNICAL_FIELD),
        ("sections.hero.settings.tagline", "Acme™", EligibilityReason.BRAND_NAME),
        ("sections.hero.settings.tagline", "true", EligibilityReason.PATTERN_MISMATCH),
        ("sections.hero.settings.tagline", "logo.png", EligibilityReason.PATTERN_MISMATCH),
    ],
)
def test_skip_reasons(key, value, reason):
    verdict = FieldEligibilityFilter().evaluate(key, value)
    assert verdict.should_translate is False
    assert verdict.reason == reason


@pytest.mark.parametrize(
    "key,value",
    [
        ("sections.hero.settings.title", "Summer sale"),
        ("sections.footer.settings.newsletter_text", "Join us"),
        ("sections.hero.settings.tagline", "Paragraph"),
        ("sections.hero.settings.tagline", "Free shipping on all orders"),
        ("sections.hero.settings.tagline", "Welcome"),
        ("sections.hero.settings.title", "Price: {{ product.price }} USD"),
    ],
)
def test_translatable_fields(key, value):
    verdict = FieldEligibilityFilter().evaluate(key, value)
    assert verdict.should_translate is True
    assert verdict.reason is None


def test_schema_flag_takes_precedence(hero_schema):
    f = FieldEligibilityFilter(SchemaCache(config.settings.theme_schema_dir))
    ctx = ResourceContext(section_type="hero-banner")

    forced_in = f.evaluate("sections.main.settings.button_url", "Shop now", ctx)
    assert forced_in.should_translate is True

    forced_out = f.evaluate("sections.main.settings.heading", "Summer sale", ctx)
    assert forced_out.should_translate is False
    assert forced_out.reason == EligibilityReason.SCHEMA_FLAGGED

    block = f.evaluate("sections.main.blocks.slide-1.settings.caption_code", "A1", ResourceContext(section_type="Hero Banner"))
    assert block.should_translate is True


def test_missing_schema_dir_degrades_to_patterns(tmp_path):
    cache = SchemaCache(tmp_path / "does-not-exist")
    f = FieldEligibilityFilter(cache)
    verdict = f.evaluate("sections.main.settings.title", "Summer sale", ResourceContext(section_type="hero"))
    assert verdict.should_translate is True
    assert cache.available is False


def test_broken_schema_file_degrades(schema_dir):
    (schema_dir / "sections" / "broken.json").write_text("{not json", encoding="utf-8")
    cache = SchemaCache(schema_dir)
    assert cache.lookup("broken", "sections.x.settings.title") is None
    assert cache.available is False


def test_schema_cache_is_process_wide():
    assert get_schema_cache() is get_schema_cache()
    assert FieldEligibilityFilter().schema_cache is get_schema_cache()


def test_evaluate_batch_merges_contexts_and_survives_derive_failure():
    f = FieldEligibilityFilter()
    fields = [
        {"key": "sections.hero.settings.title", "value": "Summer sale"},
        {"key": "explode", "value": "Welcome home"},
        {"key": "sections.hero.button_url", "value": "/x", "context": ResourceContext(field_type="link")},
    ]

    def derive(field):
        if field["key"] == "explode":
            raise RuntimeError("boom")
        return ResourceContext(section_type="hero")

    results = f.evaluate_batch(fields, base_context=ResourceContext(resource_type="ONLINE_STORE_THEME"), derive_context=derive)
    assert [r.key for r in results] == ["sections.hero.settings.title", "explode", "sections.hero.button_url"]
    assert results[0].verdict.should_translate is True
    assert results[0].context.section_type == "hero"
    assert results[0].context.resource_type == "ONLINE_STORE_THEME"
    assert results[1].context.section_type is None
    assert results[1].verdict.should_translate is True
    assert results[2].verdict.reason == EligibilityReason.URL_FIELD
    assert results[2].context.field_type == "link"


def test_evaluate_batch_over_limit_is_sliced(monkeypatch):
    monkeypatch.setattr(config.settings, "max_field_batch_size", 3)
    fields = [{"key": f"sections.s.settings.title_{i}", "value": "Hello there"} for i in range(7)]
    results = FieldEligibilityFilter().evaluate_batch(fields)
    assert len(results) == 7
    assert [r.key for r in results] == [f["key"] for f in fields]
