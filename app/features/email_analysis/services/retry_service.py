"""
Explicit re-analysis of selected emails.

Markers are cleared for every found email in one statement before any
analyzer runs, so an interrupted retry leaves emails visibly unanalyzed
rather than stuck with a stale error.
"""

import time

import structlog

from app.config import settings
from app.features.email_analysis.domain import (
    AnalysisState,
    EmailRecord,
    ProcessResult,
    RetryReport,
    RetryResetError,
    RetryResult,
    SelectionError,
)
from app.features.email_analysis.repository.email_analysis_repository import (
    EmailAnalysisRepository,
)
from app.infrastructure.observability.logging import get_logger

from .batch_service import load_context
from .chunked_runner import run_in_chunks
from .email_processor import EmailProcessor

NOT_FOUND_MESSAGE = "Email not found"


class EmailAnalysisRetryService:
    def __init__(
        self,
        processor: EmailProcessor | None = None,
        repository=EmailAnalysisRepository,
        logger: structlog.stdlib.BoundLogger | None = None,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
    ):
        self.repository = repository
        self.logger = logger or get_logger(__name__)
        self.processor = processor or EmailProcessor(repository=repository, logger=self.logger)
        self.batch_size = batch_size or settings.ANALYSIS_RETRY_BATCH_SIZE
        self.batch_delay_seconds = (
            settings.ANALYSIS_BATCH_DELAY_MS / 1000
            if batch_delay_seconds is None
            else batch_delay_seconds
        )

    async def retry(self, user_id: str, email_ids: list[str]) -> RetryReport:
        """
        Reset and re-analyze the given emails, one detail per unique id.

        Raises:
            SelectionError: The emails could not be loaded
            RetryResetError: The markers could not be cleared; nothing ran
        """
        requested = list(dict.fromkeys(i for i in email_ids if i))
        if not requested:
            return RetryReport()

        start = time.monotonic()
        log = self.logger.bind(user_id=user_id)

        try:
            found = {e.id: e for e in await self.repository.fetch_by_ids(user_id, requested)}
        except Exception as e:
            log.error("Failed to load emails for retry", error=str(e))
            raise SelectionError(f"Failed to load emails for retry: {e}") from e

        if found:
            try:
                await self.repository.reset_analysis_state(user_id, list(found))
            except Exception as e:
                log.error("Failed to reset analysis state", error=str(e), emails=len(found))
                raise RetryResetError(f"Failed to reset analysis state: {e}") from e

            for email in found.values():
                if email.state is not AnalysisState.UNANALYZED:
                    email.transition(AnalysisState.UNANALYZED)

        results: dict[str, ProcessResult] = {}

        if found:
            context = await load_context(self.repository, user_id, log)

            async def handle(email: EmailRecord) -> ProcessResult:
                try:
                    result = await self.processor.process(email, context, force_reanalysis=True)
                except Exception as e:
                    log.exception("Email processing raised during retry", email_id=email.id)
                    result = ProcessResult(email_id=email.id, success=False, error=str(e))
                results[email.id] = result
                return result

            await run_in_chunks(
                list(found.values()), handle, self.batch_size, self.batch_delay_seconds
            )

        report = RetryReport()
        for email_id in requested:
            result = results.get(email_id)
            if result is None:
                report.details.append(
                    RetryResult(record_id=email_id, success=False, error=NOT_FOUND_MESSAGE)
                )
                continue

            report.details.append(
                RetryResult(
                    record_id=email_id,
                    success=result.success,
                    error=result.error,
                    category=result.category,
                    tokens_used=result.tokens_used,
                )
            )

        log.info(
            "Retry analysis complete",
            requested=len(requested),
            found=len(found),
            succeeded=report.succeeded,
            failed=report.failed,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        return report


email_analysis_retry_service = EmailAnalysisRetryService()
