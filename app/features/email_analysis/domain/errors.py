"""
Exceptions raised by the email analysis feature.

Per-record problems never surface as exceptions to callers; they end up in
the record's analysis_error. Only the failures below escape a batch or a
retry call.
"""


class EmailAnalysisError(Exception):
    """Base exception for email analysis operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class SelectionError(EmailAnalysisError):
    """The candidate query failed, so no record could be processed."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message, operation="select_candidates", recoverable=recoverable)


class RetryResetError(EmailAnalysisError):
    """Analysis markers could not be cleared before a retry."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message, operation="reset_analysis_state", recoverable=recoverable)


class InvalidStateTransition(EmailAnalysisError):
    """A record was asked to move between analysis states illegally."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move analysis state from {current} to {target}",
            operation="state_transition",
            recoverable=False,
        )
        self.current = current
        self.target = target
