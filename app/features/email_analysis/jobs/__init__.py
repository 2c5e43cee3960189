"""
Background jobs for the email analysis feature.
"""

from .analysis_job import analyze_pending_emails, run_email_analysis_job
from .retry_failed_job import retry_failed_analyses, run_retry_failed_analyses_job

__all__ = [
    "analyze_pending_emails",
    "retry_failed_analyses",
    "run_email_analysis_job",
    "run_retry_failed_analyses_job",
]
