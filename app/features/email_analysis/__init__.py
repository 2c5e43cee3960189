"""
Email analysis feature package.

This vertical slice keeps every layer of the batch analysis pipeline
co-located: domain models and schemas, analyzers, the repository, the
processor/batch/retry services, worker jobs and the API router.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as email_analysis_router  # noqa: F401
from .services.batch_service import EmailAnalysisBatchService, email_analysis_batch_service  # noqa: F401
from .services.retry_service import EmailAnalysisRetryService, email_analysis_retry_service  # noqa: F401
from .domain.models import AnalysisState, BatchResult, EmailRecord, RetryReport  # noqa: F401
