import re
import time
from collections.abc import Callable, Sequence
from enum import Enum

import structlog

from shop_translator import prompts
from shop_translator.config import settings
from shop_translator.errors import ProviderConfigurationError, ProviderFailure
from shop_translator.guards import (
    check_brand_words,
    detect_placeholder_corruption,
    extract_terminology,
    has_prose,
    strip_non_linguistic,
)
from shop_translator.provider import TranslationProvider
from shop_translator.schemas import Chunk, Fallback, PromptContext, ResourceContext, Strategy, TranslationAttempt

log = structlog.get_logger(__name__)

_EDGE_WS_RE = re.compile(r"^(\s*)(.*?)(\s*)$", re.DOTALL)
PREVIOUS_TAIL_CHARS = 200


class FailureReason(str, Enum):
    NONE = "none"
    PROVIDER_TRANSIENT = "provider_transient"
    PROVIDER_FATAL = "provider_fatal"
    PLACEHOLDER_CORRUPTION = "placeholder_corruption"
    EMPTY_RESPONSE = "empty_response"


def select_strategy(chunks: Sequence[Chunk], context: ResourceContext | None = None) -> Strategy:
    if len(chunks) > 1:
        return Strategy.LONG_TEXT
    if context is not None and any((context.section_type, context.field_type, context.resource_type)):
        return Strategy.ENHANCED
    if chunks and len(chunks[0].text) > settings.simple_text_max_chars:
        return Strategy.ENHANCED
    return Strategy.SIMPLE


def backoff_delay(attempt: int) -> float:
    return min(settings.retry_base_delay_sec * 2 ** (attempt - 1), settings.retry_max_delay_sec)


def _previous_tail(text: str) -> str:
    plain = " ".join(strip_non_linguistic(text).split())
    return plain[-PREVIOUS_TAIL_CHARS:]


class StrategyExecutor:
    def __init__(self, provider: TranslationProvider, sleep: Callable[[float], None] = time.sleep) -> None:
        self.provider = provider
        self.sleep = sleep

    def _prompt_context(
        self,
        strategy: Strategy,
        target_locale: str,
        context: ResourceContext | None,
        source_locale: str | None,
        terminology: tuple[str, ...] = (),
        previous_translation: str | None = None,
    ) -> PromptContext:
        if strategy == Strategy.SIMPLE:
            system_prompt = prompts.build_simple_prompt(target_locale, source_locale)
        elif strategy == Strategy.ENHANCED:
            system_prompt = prompts.build_enhanced_prompt(target_locale, context, source_locale)
        else:
            system_prompt = prompts.build_long_text_prompt(
                target_locale, context, source_locale, terminology, previous_translation
            )
        return PromptContext(
            strategy=strategy,
            system_prompt=system_prompt,
            source_locale=source_locale,
            terminology=terminology,
            previous_translation=previous_translation,
        )

    def execute(
        self,
        chunks: Sequence[Chunk],
        target_locale: str,
        context: ResourceContext | None = None,
        source_locale: str | None = None,
        strategy: Strategy | None = None,
    ) -> list[TranslationAttempt]:
        if not chunks:
            return []
        strategy = strategy or select_strategy(chunks, context)

        if len(chunks) == 1:
            skip_reason = check_brand_words(chunks[0].text, context.field_type if context else None)
            if skip_reason:
                log.info("brand guard kept source text", reason=skip_reason, target_locale=target_locale)
                return [
                    TranslationAttempt(
                        strategy=strategy,
                        success=True,
                        text=chunks[0].text,
                        fallback=Fallback.BRAND_SKIP,
                        is_original=True,
                        chunk_index=chunks[0].index,
                        error=skip_reason,
                    )
                ]

        terminology: tuple[str, ...] = ()
        if strategy == Strategy.LONG_TEXT:
            terminology = extract_terminology("".join(c.text for c in chunks))

        results: list[TranslationAttempt] = []
        previous: str | None = None
        for chunk in chunks:
            prompt_context = self._prompt_context(strategy, target_locale, context, source_locale, terminology, previous)
            attempt = self._translate_chunk(chunk, target_locale, prompt_context)
            results.append(attempt)
            if strategy == Strategy.LONG_TEXT and not attempt.is_original:
                previous = _previous_tail(attempt.text)

        log.info(
            "strategy executed",
            strategy=strategy.value,
            target_locale=target_locale,
            chunks=len(chunks),
            degraded=sum(1 for a in results if not a.success),
            fallbacks=sum(1 for a in results if a.fallback != Fallback.NONE),
        )
        return results

    def _call(self, text: str, target_locale: str, prompt_context: PromptContext) -> tuple[FailureReason, str, str | None]:
        try:
            raw = self.provider.invoke(text, target_locale, prompt_context)
        except ProviderConfigurationError:
            raise
        except ProviderFailure as exc:
            reason = FailureReason.PROVIDER_TRANSIENT if exc.transient else FailureReason.PROVIDER_FATAL
            return reason, "", str(exc)

        if not raw or not raw.strip():
            return FailureReason.EMPTY_RESPONSE, "", "empty response"
        if detect_placeholder_corruption(text, raw):
            return FailureReason.PLACEHOLDER_CORRUPTION, raw, "placeholder corruption"
        return FailureReason.NONE, raw.strip(), None

    def _translate_chunk(self, chunk: Chunk, target_locale: str, prompt_context: PromptContext) -> TranslationAttempt:
        leading, core, trailing = _EDGE_WS_RE.match(chunk.text).groups()
        strategy = prompt_context.strategy

        if not has_prose(core):
            return TranslationAttempt(
                strategy=strategy, success=True, text=chunk.text, is_original=True, chunk_index=chunk.index
            )

        started = time.monotonic()
        attempt = 0
        corruption_retried = False
        while True:
            attempt += 1
            reason, text, error = self._call(core, target_locale, prompt_context)
            duration_ms = int((time.monotonic() - started) * 1000)

            if reason == FailureReason.NONE:
                return TranslationAttempt(
                    strategy=strategy,
                    success=True,
                    text=f"{leading}{text}{trailing}",
                    duration_ms=duration_ms,
                    chunk_index=chunk.index,
                    attempts=attempt,
                )

            if reason == FailureReason.PLACEHOLDER_CORRUPTION:
                if not corruption_retried:
                    corruption_retried = True
                    log.warning(
                        "placeholder corruption, retrying with simplified prompt",
                        chunk_index=chunk.index,
                        target_locale=target_locale,
                        response=text[:80],
                    )
                    prompt_context = PromptContext(
                        strategy=strategy,
                        system_prompt=prompts.build_placeholder_retry_prompt(target_locale),
                        source_locale=prompt_context.source_locale,
                    )
                    continue
                log.warning(
                    "placeholder corruption persisted, keeping source text",
                    chunk_index=chunk.index,
                    target_locale=target_locale,
                    text_length=len(core),
                )
                return TranslationAttempt(
                    strategy=strategy,
                    success=True,
                    text=chunk.text,
                    duration_ms=duration_ms,
                    fallback=Fallback.PLACEHOLDER_ERROR,
                    is_original=True,
                    chunk_index=chunk.index,
                    attempts=attempt,
                    error=error,
                )

            retryable = reason in (FailureReason.PROVIDER_TRANSIENT, FailureReason.EMPTY_RESPONSE)
            if retryable and attempt < settings.provider_max_attempts:
                delay = backoff_delay(attempt)
                log.info(
                    "provider attempt failed, backing off",
                    reason=reason.value,
                    attempt=attempt,
                    delay_sec=delay,
                    chunk_index=chunk.index,
                )
                self.sleep(delay)
                continue

            log.warning(
                "chunk translation degraded to source text",
                reason=reason.value,
                attempts=attempt,
                chunk_index=chunk.index,
                error=error,
            )
            return TranslationAttempt(
                strategy=strategy,
                success=False,
                text=chunk.text,
                duration_ms=duration_ms,
                is_original=True,
                chunk_index=chunk.index,
                attempts=attempt,
                error=f"{reason.value}: {error}",
            )
