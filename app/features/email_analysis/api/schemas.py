"""
Request/response models for the email analysis routes.
"""

from pydantic import BaseModel, Field

from app.features.email_analysis.domain import BatchResult, RetryReport


class AnalyzeEmailsRequest(BaseModel):
    max_records: int = Field(default=50, ge=1, le=200)
    batch_size: int = Field(default=10, ge=1, le=20)
    skip_already_analyzed: bool = True


class BatchErrorResponse(BaseModel):
    record_id: str
    message: str


class BatchResultResponse(BaseModel):
    success_count: int
    failure_count: int
    skipped_count: int
    categorized: dict[str, int]
    tasks_created: int
    total_tokens_used: int
    estimated_cost: float
    total_time_ms: int
    avg_time_per_email_ms: int
    errors: list[BatchErrorResponse]


class AnalyzeEmailsResponse(BaseModel):
    success: bool
    analyzed: int
    message: str
    results: BatchResultResponse

    @classmethod
    def from_batch(cls, batch: BatchResult) -> "AnalyzeEmailsResponse":
        if batch.total_records == 0:
            message = "No emails to analyze"
        else:
            message = f"Analyzed {batch.success_count} emails"
            if batch.failure_count:
                message += f" ({batch.failure_count} failed)"

        return cls(
            success=batch.failure_count == 0 or batch.success_count > 0,
            analyzed=batch.success_count,
            message=message,
            results=BatchResultResponse(**batch.to_dict()),
        )


class RetryAnalysisRequest(BaseModel):
    email_ids: list[str] = Field(min_length=1, max_length=50)


class RetryDetailResponse(BaseModel):
    record_id: str
    success: bool
    error: str | None = None
    category: str | None = None
    tokens_used: int | None = None


class RetryAnalysisResponse(BaseModel):
    succeeded: int
    failed: int
    details: list[RetryDetailResponse]

    @classmethod
    def from_report(cls, report: RetryReport) -> "RetryAnalysisResponse":
        return cls(**report.to_dict())


class SingleAnalysisResponse(BaseModel):
    record_id: str
    success: bool
    skipped: bool
    category: str | None = None
    tokens_used: int
    estimated_cost: float
    tasks_created: int
    error: str | None = None
