"""
Single-email analysis: run the analyzers, merge, persist, account tokens.

process() never raises. Every failure it can observe is written to the
record as analysis_error and returned as an unsuccessful ProcessResult, so
callers only ever aggregate results.

Unless forced, writes only land on rows that are not ANALYZED yet. When an
overlapping run saved the same email first, this run reports it as skipped
and keeps the other run's analysis and task.
"""

import asyncio
import time

import structlog

from app.features.email_analysis.analyzers import AnalyzerResult, AnalyzerSet, build_analyzer_set
from app.features.email_analysis.domain import (
    AnalysisContext,
    AnalysisState,
    DerivedTask,
    EmailRecord,
    MergedAnalysis,
    ProcessResult,
)
from app.features.email_analysis.pricing import UnknownModelError, calculate_cost
from app.features.email_analysis.repository.email_analysis_repository import (
    EmailAlreadyAnalyzedError,
    EmailAnalysisRepository,
)
from app.infrastructure.observability.logging import get_logger

PERSISTENCE_FAILURE_MESSAGE = "Failed to save analysis results"


class EmailProcessor:
    """Analyzes one email at a time on behalf of the batch and retry services."""

    def __init__(
        self,
        analyzers: AnalyzerSet | None = None,
        repository=EmailAnalysisRepository,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self.analyzers = analyzers or build_analyzer_set()
        self.repository = repository
        self.logger = logger or get_logger(__name__)

    async def process(
        self,
        email: EmailRecord,
        context: AnalysisContext,
        force_reanalysis: bool = False,
    ) -> ProcessResult:
        if email.is_analyzed and not force_reanalysis:
            return ProcessResult(email_id=email.id, success=True, skipped=True)

        if email.state is AnalysisState.ANALYZING:
            # Another task owns this record right now; leave its markers alone
            return ProcessResult(
                email_id=email.id, success=False, error="Email is already being analyzed"
            )

        log = self.logger.bind(email_id=email.id, user_id=email.user_id)
        with structlog.contextvars.bound_contextvars(email_id=email.id, user_id=email.user_id):
            try:
                return await self._process(email, context, force_reanalysis, log)
            except Exception as e:
                log.exception("Unexpected error while processing email")
                message = f"Unexpected error: {type(e).__name__}"
                await self._mark_failed(email, message, force_reanalysis, log)
                return ProcessResult(email_id=email.id, success=False, error=message)

    async def _process(
        self, email: EmailRecord, context: AnalysisContext, force_reanalysis: bool, log
    ) -> ProcessResult:
        start = time.monotonic()
        email.transition(AnalysisState.ANALYZING)

        results: list[AnalyzerResult] = await asyncio.gather(
            *(analyzer.analyze(email, context) for analyzer in self.analyzers.enabled())
        )
        tokens_used, estimated_cost = await self._account(email, results, log)
        by_name = {result.analyzer: result for result in results}

        categorization = by_name[self.analyzers.categorizer.name]
        if not categorization.ok:
            error = str(categorization.failure)
            log.warning("Categorization failed, marking email failed", error=error)
            await self._mark_failed(email, error, force_reanalysis, log)
            return ProcessResult(
                email_id=email.id,
                success=False,
                tokens_used=tokens_used,
                estimated_cost=estimated_cost,
                error=error,
            )

        degraded = [str(r.failure) for r in results if r.failure is not None]
        if degraded:
            log.warning("Optional analyzers failed, continuing without them", failures=degraded)

        analysis = MergedAnalysis(
            categorization=categorization.data,
            action_extraction=_data_or_none(by_name.get("action_extractor")),
            relationship=_data_or_none(by_name.get("relationship_tagger")),
            content_digest=_data_or_none(by_name.get("content_digest")),
            tokens_used=tokens_used,
            processing_time_ms=int((time.monotonic() - start) * 1000),
        )

        task = None
        if analysis.action_extraction is not None:
            task = DerivedTask.from_extraction(email, analysis.action_extraction, analysis.contact_id)

        try:
            tasks_created = await self.repository.save_analysis(
                email, analysis, task, only_if_unanalyzed=not force_reanalysis
            )
        except EmailAlreadyAnalyzedError:
            # A concurrent run saved first; its analysis and task stand
            log.info("Email analyzed by another run, result discarded", tokens_used=tokens_used)
            email.transition(AnalysisState.ANALYZED)
            return ProcessResult(
                email_id=email.id,
                success=True,
                skipped=True,
                tokens_used=tokens_used,
                estimated_cost=estimated_cost,
            )
        except Exception as e:
            log.error("Failed to persist analysis", error=str(e), error_type=type(e).__name__)
            await self._mark_failed(email, PERSISTENCE_FAILURE_MESSAGE, force_reanalysis, log)
            return ProcessResult(
                email_id=email.id,
                success=False,
                tokens_used=tokens_used,
                estimated_cost=estimated_cost,
                error=PERSISTENCE_FAILURE_MESSAGE,
            )

        email.transition(AnalysisState.ANALYZED)
        email.category = analysis.category

        log.info(
            "Email analyzed",
            category=analysis.category,
            tokens_used=tokens_used,
            tasks_created=tasks_created,
            duration_ms=analysis.processing_time_ms,
        )
        return ProcessResult(
            email_id=email.id,
            success=True,
            analysis=analysis,
            tokens_used=tokens_used,
            estimated_cost=estimated_cost,
            tasks_created=tasks_created,
        )

    async def _account(
        self, email: EmailRecord, results: list[AnalyzerResult], log
    ) -> tuple[int, float]:
        """Sum tokens and cost over every analyzer that called the model, and log usage rows."""
        tokens_used = 0
        estimated_cost = 0.0

        for result in results:
            if result.usage is None:
                continue

            usage = result.usage
            try:
                cost = calculate_cost(usage.model, usage.input_tokens, usage.output_tokens)
            except UnknownModelError:
                log.warning("No pricing for model, cost not counted", model=usage.model)
                cost = 0.0

            tokens_used += usage.total_tokens
            estimated_cost += cost
            # One insert at a time: a record holds at most one pooled connection
            try:
                await self.repository.record_api_usage(
                    user_id=email.user_id,
                    email_id=email.id,
                    analyzer_name=result.analyzer,
                    model=usage.model,
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    estimated_cost=cost,
                    duration_ms=result.duration_ms,
                    success=result.ok,
                    error_message=result.failure.reason if result.failure else None,
                )
            except Exception as e:
                log.warning("API usage logging failed", analyzer=result.analyzer, error=str(e))

        return tokens_used, estimated_cost

    async def _mark_failed(
        self, email: EmailRecord, message: str, force_reanalysis: bool, log
    ) -> None:
        if email.state is AnalysisState.ANALYZING:
            email.transition(AnalysisState.FAILED)
        try:
            updated = await self.repository.mark_failed(
                email, message, only_if_unanalyzed=not force_reanalysis
            )
            if not updated:
                log.info(
                    "Email analyzed by another run, failure not recorded", analysis_error=message
                )
        except Exception as e:
            log.error("Failed to record analysis error", error=str(e), analysis_error=message)


def _data_or_none(result: AnalyzerResult | None):
    return result.data if result is not None and result.ok else None
