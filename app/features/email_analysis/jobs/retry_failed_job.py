"""
Scheduled retry of failed analyses.

Picks failed emails that have cooled down (so a provider outage is not
hammered) but are not so old that they are no longer worth the tokens,
and re-runs them through the retry service owner by owner.
"""

import asyncio
from collections import defaultdict

from app.config import settings
from app.db.pool import pool_session
from app.features.email_analysis.domain import EmailAnalysisError
from app.features.email_analysis.repository.email_analysis_repository import (
    EmailAnalysisRepository,
)
from app.features.email_analysis.services.retry_service import (
    EmailAnalysisRetryService,
    email_analysis_retry_service,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


async def retry_failed_analyses(
    retry_service: EmailAnalysisRetryService = email_analysis_retry_service,
    repository=EmailAnalysisRepository,
    owner_delay_seconds: float | None = None,
) -> dict:
    candidates = await repository.fetch_failed_for_retry(
        limit=settings.RETRY_JOB_MAX_EMAILS,
        cooldown_hours=settings.RETRY_JOB_COOLDOWN_HOURS,
        max_age_days=settings.RETRY_JOB_MAX_AGE_DAYS,
    )
    summary = {"found": len(candidates), "succeeded": 0, "failed": 0, "owners": 0, "owner_errors": 0}

    if not candidates:
        logger.info("Retry job skipped - no eligible failed analyses")
        return summary

    by_owner: dict[str, list[str]] = defaultdict(list)
    for row in candidates:
        by_owner[row["user_id"]].append(row["id"])

    delay = (
        settings.RETRY_JOB_EMAIL_DELAY_MS / 1000
        if owner_delay_seconds is None
        else owner_delay_seconds
    )

    for index, (user_id, email_ids) in enumerate(by_owner.items()):
        summary["owners"] += 1
        try:
            report = await retry_service.retry(user_id, email_ids)
        except EmailAnalysisError as e:
            summary["owner_errors"] += 1
            summary["failed"] += len(email_ids)
            logger.warning("Retry failed for owner", user_id=user_id, error=str(e))
        else:
            summary["succeeded"] += report.succeeded
            summary["failed"] += report.failed

        if delay > 0 and index < len(by_owner) - 1:
            await asyncio.sleep(delay)

    logger.info("Retry failed analyses job complete", **summary)
    return summary


async def run_retry_failed_analyses_job() -> None:
    """Worker entrypoint."""
    async with pool_session():
        await retry_failed_analyses()
