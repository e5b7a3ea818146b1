"""Field-level translation pipeline.

filtering -> reserving -> protecting -> chunking -> translating -> restoring
-> validating -> confirming. Credits are held through ``CreditLedger.hold`` so
every exit after reserving either confirms or releases the reservation.
"""

import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

import structlog

from shop_translator.chunker import chunk_text, is_likely_html
from shop_translator.config import settings
from shop_translator.credits import actual_credits, estimate_credits
from shop_translator.eligibility import FieldEligibilityFilter
from shop_translator.errors import LEDGER_ERRORS, ErrorCode, InsufficientCredits, failure_code
from shop_translator.ledger import CreditLedger, ReservationHold
from shop_translator.protector import protect, restore
from shop_translator.provider import ChatCompletionProvider, TranslationProvider
from shop_translator.reporting import ErrorReporter
from shop_translator.schemas import (
    Chunk,
    EligibilityReason,
    EligibilityVerdict,
    Fallback,
    MaskedText,
    PipelineStage,
    QualityVerdict,
    TranslationAttempt,
    TranslationRequest,
    TranslationResult,
)
from shop_translator.strategy import StrategyExecutor
from shop_translator.validator import assess

log = structlog.get_logger(__name__)


def _original(request: TranslationRequest, stage: PipelineStage, success: bool, reason: str | None) -> TranslationResult:
    return TranslationResult(
        field_path=request.field_path,
        success=success,
        text=request.source_text,
        is_original=True,
        reason=reason,
        stage=stage,
    )


class TranslationPipeline:
    def __init__(
        self,
        provider: TranslationProvider | None = None,
        ledger: CreditLedger | None = None,
        eligibility: FieldEligibilityFilter | None = None,
        executor: StrategyExecutor | None = None,
        reporter: ErrorReporter | None = None,
    ) -> None:
        if executor is None:
            executor = StrategyExecutor(provider or ChatCompletionProvider())
        self.executor = executor
        self.ledger = ledger or CreditLedger()
        self.eligibility = eligibility or FieldEligibilityFilter()
        self.reporter = reporter or ErrorReporter()

    def translate_field(
        self, request: TranslationRequest, verdict: EligibilityVerdict | None = None
    ) -> TranslationResult:
        with structlog.contextvars.bound_contextvars(
            shop_id=request.shop_id, field_path=request.field_path, target_locale=request.target_locale
        ):
            started = time.monotonic()
            result = self._translate_field(request, verdict)
            log.info(
                "field processed",
                stage=result.stage.value,
                success=result.success,
                is_original=result.is_original,
                reason=result.reason,
                credits_used=result.credits_used,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            return result

    def translate_batch(self, shop_id: str, requests: Sequence[TranslationRequest]) -> list[TranslationResult]:
        if any(r.shop_id != shop_id for r in requests):
            raise ValueError("all requests in a batch must belong to the same shop")
        if not requests:
            return []

        fields = [{"key": r.field_path, "value": r.source_text, "context": r.resource_context} for r in requests]
        try:
            verdicts: list[EligibilityVerdict | None] = [e.verdict for e in self.eligibility.evaluate_batch(fields)]
        except Exception as exc:
            log.error("batch eligibility failed, evaluating per field", shop_id=shop_id, error=str(exc))
            verdicts = [None] * len(requests)

        workers = max(1, min(settings.batch_workers, len(requests)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="field") as pool:
            results = list(pool.map(self.translate_field, requests, verdicts))

        log.info(
            "batch processed",
            shop_id=shop_id,
            fields=len(requests),
            translated=sum(1 for r in results if r.success and not r.is_original),
            failed=sum(1 for r in results if not r.success),
        )
        return results

    def _filter(self, request: TranslationRequest) -> EligibilityVerdict:
        try:
            return self.eligibility.evaluate(request.field_path, request.source_text, request.resource_context)
        except Exception as exc:
            log.error("eligibility check failed, treating field as translatable", error=str(exc))
            return EligibilityVerdict(should_translate=True)

    def _translate_field(self, request: TranslationRequest, verdict: EligibilityVerdict | None) -> TranslationResult:
        verdict = verdict or self._filter(request)
        if not verdict.should_translate:
            return _original(request, PipelineStage.SKIPPED, True, verdict.reason.value if verdict.reason else None)

        text = request.source_text
        if not isinstance(text, str) or not text.strip():
            return _original(request, PipelineStage.SKIPPED, True, EligibilityReason.EMPTY_OR_NON_TEXT.value)

        estimate = estimate_credits(text)
        try:
            with self.ledger.hold(
                request.shop_id,
                estimate,
                metadata={"field_path": request.field_path, "target_locale": request.target_locale},
            ) as hold:
                return self._run(request, text, hold)
        except InsufficientCredits as exc:
            log.info("insufficient credits", required=exc.required, available=exc.available)
            return _original(request, PipelineStage.FAILED, False, exc.code.value)
        except LEDGER_ERRORS as exc:
            self.reporter.report(
                "LEDGER",
                exc.code.value,
                {"shop_id": request.shop_id, "field_path": request.field_path, **exc.context},
                message=str(exc),
            )
            return _original(request, PipelineStage.FAILED, False, exc.code.value)

    def _protect(self, text: str) -> MaskedText:
        try:
            return protect(text)
        except Exception as exc:
            log.error("markup protection failed, sending text unmasked", error=str(exc))
            return MaskedText(text=text)

    def _chunk(self, text: str, html_mode: bool) -> list[Chunk]:
        try:
            chunks = chunk_text(text, is_html=html_mode)
        except Exception as exc:
            log.error("chunking failed, using a single chunk", error=str(exc))
            chunks = []
        return chunks or [Chunk(index=0, text=text, is_html_like=html_mode)]

    def _assess(self, original: str, translated: str, request: TranslationRequest) -> QualityVerdict:
        try:
            return assess(original, translated, request.target_locale, request.source_locale)
        except Exception as exc:
            log.error("quality validation failed, accepting translation", error=str(exc))
            return QualityVerdict(is_valid=True)

    def _execute(self, request: TranslationRequest, chunks: list[Chunk]) -> list[TranslationAttempt]:
        return self.executor.execute(chunks, request.target_locale, request.resource_context, request.source_locale)

    def _run(self, request: TranslationRequest, text: str, hold: ReservationHold) -> TranslationResult:
        stage = PipelineStage.PROTECTING
        try:
            html_mode = is_likely_html(text)
            masked = self._protect(text)

            stage = PipelineStage.CHUNKING
            chunks = self._chunk(masked.text, html_mode)

            stage = PipelineStage.TRANSLATING
            attempts = self._execute(request, chunks)

            stage = PipelineStage.RESTORING
            translated = restore("".join(a.text for a in attempts), masked.token_map)

            stage = PipelineStage.VALIDATING
            quality = QualityVerdict(is_valid=True)
            # a field kept wholly in its source form has nothing to score
            if not all(a.is_original for a in attempts):
                quality = self._assess(text, translated, request)
                if quality.retryable:
                    log.info("quality check failed, retrying translation once", codes=[r.code for r in quality.records])
                    attempts = self._execute(request, chunks)
                    translated = restore("".join(a.text for a in attempts), masked.token_map)
                    if not all(a.is_original for a in attempts):
                        quality = self._assess(text, translated, request)
                    else:
                        quality = QualityVerdict(is_valid=True)

            stage = PipelineStage.CONFIRMING
            sources = [c.text for c, a in zip(chunks, attempts) if not a.is_original]
            credits = actual_credits(sources)
            usage = {
                "resource_id": request.resource_context.resource_id,
                "resource_type": request.resource_context.resource_type,
                "source_language": request.source_locale,
                "target_language": request.target_locale,
                "metadata": {"field_path": request.field_path, "chunks": len(chunks)},
            }
            if credits > 0:
                hold.confirm(credits, usage)
            else:
                hold.release(note="nothing translated")
        except LEDGER_ERRORS:
            raise
        except Exception as exc:
            code = failure_code(exc)
            log.exception("field translation failed", stage=stage.value, code=code.value)
            hold.release(note=f"failed at {stage.value}")
            self.reporter.report(
                "PIPELINE",
                code.value,
                {"shop_id": request.shop_id, "field_path": request.field_path, "stage": stage.value},
                message=str(exc),
                exc=exc,
            )
            return _original(request, PipelineStage.FAILED, False, code.value)

        return self._result(request, text, translated, attempts, quality, credits)

    def _result(
        self,
        request: TranslationRequest,
        text: str,
        translated: str,
        attempts: list[TranslationAttempt],
        quality: QualityVerdict,
        credits: int,
    ) -> TranslationResult:
        context = {"shop_id": request.shop_id, "field_path": request.field_path, "target_locale": request.target_locale}
        is_original = all(a.is_original for a in attempts)

        fallback = None
        reason = None
        if any(a.fallback == Fallback.PLACEHOLDER_ERROR for a in attempts):
            fallback = Fallback.PLACEHOLDER_ERROR
            reason = ErrorCode.PLACEHOLDER_CORRUPTION.value
            self.reporter.report(
                "VALIDATION",
                ErrorCode.PLACEHOLDER_CORRUPTION.value,
                {**context, "chunks": [a.chunk_index for a in attempts if a.fallback == Fallback.PLACEHOLDER_ERROR]},
                message="provider corrupted protection tokens",
            )
        elif any(a.fallback == Fallback.BRAND_SKIP for a in attempts):
            fallback = Fallback.BRAND_SKIP
            reason = ErrorCode.BRAND_SKIP.value

        failed = [a for a in attempts if not a.success]
        if failed:
            reason = reason or ErrorCode.PROVIDER_FAILURE.value
            self.reporter.report(
                "PROVIDER",
                ErrorCode.PROVIDER_FAILURE.value,
                {**context, "chunks": [a.chunk_index for a in failed], "error": failed[0].error},
                message="provider failed after retries",
            )

        for record in quality.records:
            if record.severity >= 2:
                self.reporter.report(record.category.value, record.code, {**context, **record.context}, record.message)
        if not quality.is_valid:
            reason = reason or ErrorCode.QUALITY_INCIDENT.value

        return TranslationResult(
            field_path=request.field_path,
            success=True,
            text=text if is_original else translated,
            is_original=is_original,
            fallback=fallback,
            reason=reason,
            quality_issues=quality.records,
            credits_used=credits,
            stage=PipelineStage.DONE,
        )
