"""
Scheduled batch analysis.

Runs one batch per owner that has unanalyzed emails. Meant to be invoked
once per tick by an external scheduler (cron, platform worker), not looped.
"""

from datetime import UTC, datetime

from app.config import settings
from app.db.pool import pool_session
from app.features.email_analysis.domain import EmailAnalysisError
from app.features.email_analysis.repository.email_analysis_repository import (
    EmailAnalysisRepository,
)
from app.features.email_analysis.services.batch_service import (
    EmailAnalysisBatchService,
    email_analysis_batch_service,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AnalysisJobMetrics:
    """Metrics tracking for one scheduled analysis run."""

    def __init__(self):
        self.start_time = datetime.now(UTC)
        self.users_processed = 0
        self.users_failed = 0
        self.emails_analyzed = 0
        self.emails_failed = 0
        self.total_tokens_used = 0
        self.estimated_cost = 0.0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_success(self, user_id: str, success_count: int, failure_count: int, tokens: int, cost: float):
        self.users_processed += 1
        self.emails_analyzed += success_count
        self.emails_failed += failure_count
        self.total_tokens_used += tokens
        self.estimated_cost += cost

        logger.debug(
            "Owner batch completed",
            user_id=user_id,
            success_count=success_count,
            failure_count=failure_count,
            job_run="email_analysis",
        )

    def record_failure(self, user_id: str, error: str):
        self.users_processed += 1
        self.users_failed += 1
        self.errors.append(
            {"user_id": user_id, "error": error, "timestamp": datetime.now(UTC).isoformat()}
        )

        logger.warning("Owner batch failed", user_id=user_id, error=error, job_run="email_analysis")

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "email_analysis",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "users_processed": self.users_processed,
            "users_failed": self.users_failed,
            "emails_analyzed": self.emails_analyzed,
            "emails_failed": self.emails_failed,
            "total_tokens_used": self.total_tokens_used,
            "estimated_cost": round(self.estimated_cost, 6),
            "errors_count": len(self.errors),
        }


async def analyze_pending_emails(
    batch_service: EmailAnalysisBatchService = email_analysis_batch_service,
    repository=EmailAnalysisRepository,
    max_users: int | None = None,
) -> dict:
    """Run one default batch for each owner with unanalyzed emails."""
    metrics = AnalysisJobMetrics()
    user_ids = await repository.fetch_users_with_pending(max_users or settings.ANALYSIS_JOB_MAX_USERS)

    if not user_ids:
        logger.info("Email analysis job skipped - no pending emails")

    for user_id in user_ids:
        try:
            batch = await batch_service.run_batch(user_id)
        except EmailAnalysisError as e:
            metrics.record_failure(user_id, str(e))
            continue

        metrics.record_success(
            user_id,
            batch.success_count,
            batch.failure_count,
            batch.total_tokens_used,
            batch.estimated_cost,
        )

    metrics.finalize()
    summary = metrics.to_dict()
    logger.info("Email analysis job complete", **summary)
    return summary


async def run_email_analysis_job() -> None:
    """Worker entrypoint."""
    async with pool_session():
        await analyze_pending_emails()
