"""
Batch email analysis orchestration.

Selects an owner's candidate emails, processes them in bounded concurrent
chunks, aggregates the outcomes and writes one run summary per call.
"""

import time
from collections.abc import Callable

import structlog

from app.config import settings
from app.features.email_analysis.domain import (
    AnalysisContext,
    BatchResult,
    EmailRecord,
    ProcessResult,
    RunSummary,
    SelectionError,
)
from app.features.email_analysis.repository.email_analysis_repository import (
    EmailAnalysisRepository,
)
from app.infrastructure.observability.logging import get_logger

from .chunked_runner import run_in_chunks
from .email_processor import EmailProcessor

MAX_RECORDS_LIMIT = 200
MAX_BATCH_SIZE = 20

ProgressCallback = Callable[[int, int], None]
ErrorCallback = Callable[[str, str], None]


async def load_context(repository, user_id: str, log) -> AnalysisContext:
    """Known contacts for the owner; an unavailable roster means an empty one."""
    try:
        contacts = await repository.fetch_contacts(user_id)
    except Exception as e:
        log.warning("Failed to load contacts, analyzing without them", error=str(e))
        contacts = []
    return AnalysisContext(user_id=user_id, contacts=contacts)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class EmailAnalysisBatchService:
    """Runs the analysis pipeline over one owner's unanalyzed emails."""

    def __init__(
        self,
        processor: EmailProcessor | None = None,
        repository=EmailAnalysisRepository,
        logger: structlog.stdlib.BoundLogger | None = None,
        batch_delay_seconds: float | None = None,
    ):
        self.repository = repository
        self.logger = logger or get_logger(__name__)
        self.processor = processor or EmailProcessor(repository=repository, logger=self.logger)
        self.batch_delay_seconds = (
            settings.ANALYSIS_BATCH_DELAY_MS / 1000
            if batch_delay_seconds is None
            else batch_delay_seconds
        )

    async def run_batch(
        self,
        user_id: str,
        max_records: int | None = None,
        batch_size: int | None = None,
        skip_already_analyzed: bool = True,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> BatchResult:
        """
        Analyze up to max_records emails, batch_size at a time.

        Args:
            user_id: Owner whose emails are analyzed
            max_records: Selection cap (1-200)
            batch_size: Concurrent emails per chunk (1-20)
            skip_already_analyzed: Select only emails with neither marker set;
                when False, analyzed and failed emails are re-run as well
            on_progress: Called with (completed, total) after each email
            on_error: Called with (email_id, message) for each failed email

        Raises:
            ValueError: Limits out of range
            SelectionError: Candidate emails could not be loaded
        """
        max_records = settings.ANALYSIS_DEFAULT_MAX_RECORDS if max_records is None else max_records
        batch_size = settings.ANALYSIS_DEFAULT_BATCH_SIZE if batch_size is None else batch_size
        if not 1 <= max_records <= MAX_RECORDS_LIMIT:
            raise ValueError(f"max_records must be between 1 and {MAX_RECORDS_LIMIT}")
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")

        start = time.monotonic()
        log = self.logger.bind(user_id=user_id)

        try:
            emails = await self.repository.fetch_candidates(
                user_id, max_records, skip_analyzed=skip_already_analyzed
            )
        except Exception as e:
            log.error("Failed to select emails for analysis", error=str(e))
            await self._record_run(
                RunSummary(
                    user_id=user_id,
                    emails_fetched=0,
                    emails_analyzed=0,
                    errors_count=1,
                    duration_ms=_elapsed_ms(start),
                    error_message=f"Failed to fetch emails: {e}",
                ),
                log,
            )
            raise SelectionError(f"Failed to fetch emails for analysis: {e}") from e

        batch = BatchResult(total_records=len(emails))
        log.info(
            "Starting batch analysis",
            emails=len(emails),
            batch_size=batch_size,
            skip_already_analyzed=skip_already_analyzed,
        )

        if emails:
            context = await load_context(self.repository, user_id, log)
            completed = 0

            async def handle(email: EmailRecord) -> ProcessResult:
                nonlocal completed
                try:
                    result = await self.processor.process(
                        email, context, force_reanalysis=not skip_already_analyzed
                    )
                except Exception as e:
                    log.exception("Email processing raised", email_id=email.id)
                    result = ProcessResult(email_id=email.id, success=False, error=str(e))

                # Single event loop: no await between these updates
                batch.record(result)
                completed += 1
                self._notify_progress(on_progress, completed, len(emails), log)
                if not result.success:
                    self._notify_error(on_error, email.id, result.error or "Unknown error", log)
                return result

            await run_in_chunks(emails, handle, batch_size, self.batch_delay_seconds)

        batch.total_time_ms = _elapsed_ms(start)
        await self._record_run(RunSummary.from_batch(user_id, len(emails), batch), log)

        log.info(
            "Batch analysis complete",
            success_count=batch.success_count,
            failure_count=batch.failure_count,
            skipped_count=batch.skipped_count,
            tasks_created=batch.tasks_created,
            total_tokens_used=batch.total_tokens_used,
            estimated_cost=round(batch.estimated_cost, 6),
            total_time_ms=batch.total_time_ms,
        )
        return batch

    async def analyze_one(
        self, user_id: str, email_id: str, force_reanalysis: bool = False
    ) -> ProcessResult | None:
        """Analyze a single owned email outside any batch. None when not found."""
        log = self.logger.bind(user_id=user_id)
        email = await self.repository.fetch_email(user_id, email_id)
        if email is None:
            return None

        context = await load_context(self.repository, user_id, log)
        return await self.processor.process(email, context, force_reanalysis=force_reanalysis)

    async def _record_run(self, summary: RunSummary, log) -> None:
        try:
            await self.repository.insert_run_summary(summary)
        except Exception as e:
            log.error("Failed to record analysis run", error=str(e), status=summary.status)

    @staticmethod
    def _notify_progress(callback: ProgressCallback | None, completed: int, total: int, log) -> None:
        if callback is None:
            return
        try:
            callback(completed, total)
        except Exception as e:
            log.warning("Progress callback failed", error=str(e))

    @staticmethod
    def _notify_error(callback: ErrorCallback | None, email_id: str, message: str, log) -> None:
        if callback is None:
            return
        try:
            callback(email_id, message)
        except Exception as e:
            log.warning("Error callback failed", email_id=email_id, error=str(e))


# Singleton for routes and jobs
email_analysis_batch_service = EmailAnalysisBatchService()
