"""
Service layer for the email analysis feature.
"""

from .batch_service import EmailAnalysisBatchService, email_analysis_batch_service
from .chunked_runner import run_in_chunks
from .email_processor import PERSISTENCE_FAILURE_MESSAGE, EmailProcessor
from .retry_service import EmailAnalysisRetryService, email_analysis_retry_service

__all__ = [
    "EmailAnalysisBatchService",
    "EmailAnalysisRetryService",
    "EmailProcessor",
    "PERSISTENCE_FAILURE_MESSAGE",
    "email_analysis_batch_service",
    "email_analysis_retry_service",
    "run_in_chunks",
]
