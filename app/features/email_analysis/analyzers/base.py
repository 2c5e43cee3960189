"""
Shared machinery for the AI analyzers.

An analyzer turns (email, context) into an AnalyzerResult: either validated
data or an AnalyzerFailure, always with the token usage it consumed.
Analyzers never raise; every error path becomes a failure value so the
processor can decide whether it is load-bearing.
"""

import time
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import ValidationError

from app.config import settings
from app.features.email_analysis.domain.models import AnalysisContext, EmailRecord
from app.features.email_analysis.domain.schemas import AnalyzerOutput
from app.infrastructure.observability.logging import get_logger, log_analyzer_call
from app.services.openai_service import (
    OpenAIExtractionError,
    OpenAIService,
    OpenAIServiceError,
    openai_service,
)

logger = get_logger(__name__)

T = TypeVar("T", bound=AnalyzerOutput)

MAX_SUBJECT_CHARS = 500


@dataclass(slots=True)
class TokenUsage:
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(slots=True)
class AnalyzerFailure:
    analyzer: str
    reason: str

    def __str__(self) -> str:
        return f"{self.analyzer}: {self.reason}"


@dataclass(slots=True)
class AnalyzerResult(Generic[T]):
    """Tagged result: exactly one of data/failure is set."""

    analyzer: str
    data: T | None = None
    failure: AnalyzerFailure | None = None
    usage: TokenUsage | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.failure is None and self.data is not None

    @property
    def tokens_used(self) -> int:
        return self.usage.total_tokens if self.usage else 0


def truncate_body(text: str, max_chars: int) -> str:
    """Keep the first max_chars characters."""
    return text if len(text) <= max_chars else text[:max_chars]


def format_validation_error(error: ValidationError, limit: int = 3) -> str:
    parts = []
    for item in error.errors()[:limit]:
        location = ".".join(str(p) for p in item["loc"]) or "payload"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


class BaseAnalyzer(Generic[T]):
    """
    Base class for analyzers backed by one forced function call.

    Subclasses set the class attributes and write a system prompt; they may
    override post_process to reconcile validated output with the context.
    """

    name: ClassVar[str]
    output_model: ClassVar[type[AnalyzerOutput]]
    function_name: ClassVar[str]
    function_description: ClassVar[str]

    def __init__(self, transport: OpenAIService | None = None, config: dict[str, Any] | None = None):
        self.transport = transport or openai_service
        self.config = config or settings.get_analyzer_config(self.name)

    def system_prompt(self, context: AnalysisContext) -> str:
        raise NotImplementedError

    def function_schema(self) -> dict[str, Any]:
        return self.output_model.model_json_schema()

    def post_process(self, data: T, email: EmailRecord, context: AnalysisContext) -> T:
        return data

    def format_email(self, email: EmailRecord) -> str:
        max_chars = self.config.get("max_body_chars", settings.ANALYSIS_MAX_BODY_CHARS)

        parts = [
            f"From: {email.sender_name or ''} <{email.sender_email}>",
            f"Date: {email.date.isoformat() if email.date else 'unknown'}",
            f"Subject: {truncate_body(email.subject or '(no subject)', MAX_SUBJECT_CHARS)}",
        ]
        if email.gmail_labels:
            parts.append(f"Labels: {', '.join(email.gmail_labels)}")

        parts.append("")
        parts.append("--- Email Body ---")
        if email.body_text:
            parts.append(truncate_body(email.body_text, max_chars))
        elif email.snippet:
            parts.append(f"[Snippet only]: {truncate_body(email.snippet, max_chars)}")
        else:
            parts.append("[No body content available]")

        return "\n".join(parts)

    async def analyze(self, email: EmailRecord, context: AnalysisContext) -> AnalyzerResult[T]:
        start = time.monotonic()
        usage: TokenUsage | None = None

        try:
            call = await self.transport.call_function(
                system_prompt=self.system_prompt(context),
                user_content=self.format_email(email),
                function_name=self.function_name,
                function_description=self.function_description,
                parameters=self.function_schema(),
                model=self.config["model"],
                temperature=self.config["temperature"],
                max_tokens=self.config["max_tokens"],
            )
            usage = TokenUsage(call.model, call.input_tokens, call.output_tokens)
            data = self.output_model.model_validate(call.arguments)
            data = self.post_process(data, email, context)

        except ValidationError as e:
            return self._failure(email, f"Invalid output: {format_validation_error(e)}", usage, start)

        except OpenAIExtractionError as e:
            if e.input_tokens or e.output_tokens:
                usage = TokenUsage(e.model or self.config["model"], e.input_tokens, e.output_tokens)
            return self._failure(email, str(e), usage, start)

        except OpenAIServiceError as e:
            return self._failure(email, str(e), usage, start)

        except Exception as e:
            logger.exception("Unexpected analyzer error", analyzer=self.name, email_id=email.id)
            return self._failure(email, f"{type(e).__name__}: {e}", usage, start)

        result = AnalyzerResult(
            analyzer=self.name, data=data, usage=usage, duration_ms=_elapsed_ms(start)
        )
        log_analyzer_call(self.name, email.id, True, result.tokens_used, result.duration_ms)
        return result

    def _failure(
        self, email: EmailRecord, reason: str, usage: TokenUsage | None, start: float
    ) -> AnalyzerResult[T]:
        result = AnalyzerResult(
            analyzer=self.name,
            failure=AnalyzerFailure(self.name, reason),
            usage=usage,
            duration_ms=_elapsed_ms(start),
        )
        log_analyzer_call(
            self.name, email.id, False, result.tokens_used, result.duration_ms, error=reason
        )
        return result


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
