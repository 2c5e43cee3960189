"""
Domain subpackage for the email analysis feature.
"""

from .errors import EmailAnalysisError, InvalidStateTransition, RetryResetError, SelectionError
from .models import (
    AnalysisContext,
    AnalysisState,
    BatchError,
    BatchResult,
    DerivedTask,
    EmailRecord,
    KnownContact,
    MergedAnalysis,
    ProcessResult,
    RetryReport,
    RetryResult,
    RunSummary,
)

__all__ = [
    "AnalysisContext",
    "AnalysisState",
    "BatchError",
    "BatchResult",
    "DerivedTask",
    "EmailAnalysisError",
    "EmailRecord",
    "InvalidStateTransition",
    "KnownContact",
    "MergedAnalysis",
    "ProcessResult",
    "RetryReport",
    "RetryResetError",
    "RetryResult",
    "RunSummary",
    "SelectionError",
]
