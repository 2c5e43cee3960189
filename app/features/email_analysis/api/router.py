"""
Email analysis routes.

Usage:
    1. POST /emails/analyze - Analyze the caller's unanalyzed emails in batches
    2. POST /emails/retry-analysis - Reset and re-analyze specific emails
    3. POST /emails/{email_id}/analyze - Analyze one email now
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.auth.verify import current_user_id
from app.db.helpers import DatabaseError
from app.features.email_analysis.domain import EmailAnalysisError
from app.features.email_analysis.services.batch_service import email_analysis_batch_service
from app.features.email_analysis.services.retry_service import email_analysis_retry_service
from app.infrastructure.observability.logging import get_logger

from .schemas import (
    AnalyzeEmailsRequest,
    AnalyzeEmailsResponse,
    RetryAnalysisRequest,
    RetryAnalysisResponse,
    SingleAnalysisResponse,
)

router = APIRouter(prefix="/emails", tags=["email-analysis"])
logger = get_logger(__name__)


@router.post("/analyze", response_model=AnalyzeEmailsResponse)
async def analyze_emails(
    payload: AnalyzeEmailsRequest | None = None,
    user_id: str = Depends(current_user_id),
):
    """
    Run batch analysis over the caller's emails.

    Raises:
        401: Invalid authentication token
        422: Limits out of range
        500: Candidate emails could not be loaded
    """
    payload = payload or AnalyzeEmailsRequest()

    try:
        batch = await email_analysis_batch_service.run_batch(
            user_id,
            max_records=payload.max_records,
            batch_size=payload.batch_size,
            skip_already_analyzed=payload.skip_already_analyzed,
        )
    except EmailAnalysisError as e:
        logger.error("Batch analysis failed", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Email analysis failed"
        ) from e

    return AnalyzeEmailsResponse.from_batch(batch)


@router.post("/retry-analysis", response_model=RetryAnalysisResponse)
async def retry_analysis(
    payload: RetryAnalysisRequest,
    user_id: str = Depends(current_user_id),
):
    """
    Clear analysis markers for the given emails and analyze them again.

    Emails that do not belong to the caller are reported as not found.
    """
    try:
        report = await email_analysis_retry_service.retry(user_id, payload.email_ids)
    except EmailAnalysisError as e:
        logger.error("Retry analysis failed", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Retry analysis failed"
        ) from e

    return RetryAnalysisResponse.from_report(report)


@router.post("/{email_id}/analyze", response_model=SingleAnalysisResponse)
async def analyze_single_email(
    email_id: str,
    force: bool = Query(default=False),
    user_id: str = Depends(current_user_id),
):
    """Analyze one email immediately; force re-runs an already analyzed email."""
    try:
        result = await email_analysis_batch_service.analyze_one(
            user_id, email_id, force_reanalysis=force
        )
    except DatabaseError as e:
        logger.error("Failed to load email for analysis", user_id=user_id, email_id=email_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Email analysis failed"
        ) from e

    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Email not found")

    return SingleAnalysisResponse(
        record_id=result.email_id,
        success=result.success,
        skipped=result.skipped,
        category=result.category,
        tokens_used=result.tokens_used,
        estimated_cost=result.estimated_cost,
        tasks_created=result.tasks_created,
        error=result.error,
    )
