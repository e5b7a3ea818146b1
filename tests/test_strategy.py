import pytest

from shop_translator import config
from shop_translator.errors import ProviderConfigurationError, ProviderFailure, ProviderTimeout
from shop_translator.schemas import Chunk, Fallback, ResourceContext, Strategy
from shop_translator.strategy import StrategyExecutor, backoff_delay, select_strategy


def _chunks(*texts):
    return [Chunk(index=i, text=t) for i, t in enumerate(texts)]


def test_select_strategy():
    assert select_strategy(_chunks("Hi")) == Strategy.SIMPLE
    assert select_strategy(_chunks("a", "b")) == Strategy.LONG_TEXT
    assert select_strategy(_chunks("Hi"), ResourceContext(section_type="hero")) == Strategy.ENHANCED
    assert select_strategy(_chunks("Hi"), ResourceContext(resource_id="gid://1")) == Strategy.SIMPLE
    assert select_strategy(_chunks("x" * 301)) == Strategy.ENHANCED


def test_backoff_is_exponential_and_capped(monkeypatch):
    monkeypatch.setattr(config.settings, "retry_base_delay_sec", 1.0)
    monkeypatch.setattr(config.settings, "retry_max_delay_sec", 5.0)
    assert [backoff_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


def test_simple_translation_keeps_edge_whitespace(make_provider):
    provider = make_provider(["Hallo Welt"])
    [attempt] = StrategyExecutor(provider).execute(_chunks("  Hello world\n"), "de")
    assert attempt.success is True
    assert attempt.text == "  Hallo Welt\n"
    assert attempt.is_original is False
    assert provider.calls[0][0] == "Hello world"


def test_lone_placeholder_response_falls_back_to_source(make_provider):
    provider = make_provider(["__PROTECTED_STYLE_ATTR__", "__PROTECTED_STYLE_ATTR__"])
    [attempt] = StrategyExecutor(provider).execute(_chunks("Lightweight jacket"), "fr")
    assert attempt.fallback == Fallback.PLACEHOLDER_ERROR
    assert attempt.is_original is True
    assert attempt.text == "Lightweight jacket"
    assert len(provider.calls) == 2
    # second try uses the simplified prompt
    assert "placeholder" in provider.calls[1][2].system_prompt


def test_placeholder_retry_can_recover(make_provider):
    provider = make_provider(["__PROTECTED_URL_9__", "Veste légère"])
    [attempt] = StrategyExecutor(provider).execute(_chunks("Lightweight jacket"), "fr")
    assert attempt.fallback == Fallback.NONE
    assert attempt.text == "Veste légère"


def test_dropped_token_is_corruption(make_provider):
    sent = "Read __PROTECTED_URL_0__ more"
    provider = make_provider(["Lire plus", "Lire plus"])
    [attempt] = StrategyExecutor(provider).execute(_chunks(sent), "fr")
    assert attempt.fallback == Fallback.PLACEHOLDER_ERROR
    assert attempt.text == sent


def test_transient_failures_retry_with_backoff(make_provider, monkeypatch):
    monkeypatch.setattr(config.settings, "retry_base_delay_sec", 0.5)
    delays = []
    provider = make_provider([ProviderTimeout("slow"), ProviderFailure("503"), "Hallo"])
    [attempt] = StrategyExecutor(provider, sleep=delays.append).execute(_chunks("Hello"), "de")
    assert attempt.success is True
    assert attempt.text == "Hallo"
    assert attempt.attempts == 3
    assert delays == [0.5, 1.0]


def test_exhausted_retries_degrade_to_source(make_provider, monkeypatch):
    monkeypatch.setattr(config.settings, "provider_max_attempts", 2)
    provider = make_provider(["", "   "])
    [attempt] = StrategyExecutor(provider, sleep=lambda s: None).execute(_chunks("Hello"), "de")
    assert attempt.success is False
    assert attempt.is_original is True
    assert attempt.text == "Hello"
    assert len(provider.calls) == 2


def test_fatal_provider_error_is_not_retried(make_provider):
    provider = make_provider([ProviderFailure("http_400", transient=False)])
    [attempt] = StrategyExecutor(provider).execute(_chunks("Hello"), "de")
    assert attempt.success is False
    assert attempt.is_original is True
    assert len(provider.calls) == 1


def test_configuration_error_propagates(make_provider):
    provider = make_provider([ProviderConfigurationError("OPENAI_API_KEY is not set")])
    with pytest.raises(ProviderConfigurationError):
        StrategyExecutor(provider).execute(_chunks("Hello"), "de")


@pytest.mark.parametrize("text,field_type", [("Nike", None), ("ABC-1234", None), ("USB", None), ("Acme Co", "vendor")])
def test_brand_guard_skips_provider(make_provider, text, field_type):
    provider = make_provider()
    [attempt] = StrategyExecutor(provider).execute(_chunks(text), "de", ResourceContext(field_type=field_type))
    assert attempt.fallback == Fallback.BRAND_SKIP
    assert attempt.text == text
    assert provider.calls == []


def test_option_fields_bypass_brand_guard(make_provider):
    provider = make_provider(["GROSS"])
    [attempt] = StrategyExecutor(provider).execute(_chunks("SIZE"), "de", ResourceContext(field_type="name"))
    assert attempt.fallback == Fallback.NONE
    assert len(provider.calls) == 1


def test_markup_only_chunk_is_not_sent(make_provider):
    provider = make_provider()
    [attempt] = StrategyExecutor(provider).execute(_chunks("<br>__PROTECTED_IMG_0__ {{ x }}"), "de")
    assert attempt.is_original is True
    assert attempt.success is True
    assert provider.calls == []


def test_long_text_shares_terminology_and_previous_tail(make_provider):
    provider = make_provider()
    chunks = _chunks("The Gore-Tex Pro shell by Acme keeps you dry. ", "Acme ships worldwide. ")
    attempts = StrategyExecutor(provider).execute(chunks, "de")
    assert [a.strategy for a in attempts] == [Strategy.LONG_TEXT, Strategy.LONG_TEXT]
    first_ctx, second_ctx = provider.calls[0][2], provider.calls[1][2]
    assert "Gore-Tex Pro" in first_ctx.terminology
    assert first_ctx.previous_translation is None
    assert second_ctx.previous_translation == attempts[0].text.strip()
    assert all(a.text.endswith(" ") for a in attempts)


def test_repeated_token_is_corruption(make_provider):
    sent = "Intro __PROTECTED_SCRIPT_BLOCK_0__ outro"
    doubled = "Einleitung __PROTECTED_SCRIPT_BLOCK_0__ __PROTECTED_SCRIPT_BLOCK_0__ Schluss"
    provider = make_provider([doubled, doubled])
    [attempt] = StrategyExecutor(provider).execute(_chunks(sent), "de")
    assert attempt.fallback == Fallback.PLACEHOLDER_ERROR
    assert attempt.text == sent
    assert len(provider.calls) == 2
