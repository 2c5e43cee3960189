# app/services/openai_service.py
"""
OpenAI Service for structured email analysis.

Every analyzer talks to the model through a single forced function call:
the analyzer supplies a JSON schema, the model must answer by "calling"
that function, and the parsed arguments come back with token usage.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class OpenAIExtractionError(Exception):
    """
    Raised when the model answered but the answer is unusable.

    Tokens were still billed for the response, so the usage is attached.
    """

    def __init__(
        self,
        message: str,
        api_error: str | None = None,
        recoverable: bool = True,
        model: str | None = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ):
        super().__init__(message)
        self.api_error = api_error
        self.recoverable = recoverable
        self.model = model
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens


class OpenAIServiceError(Exception):
    """Base exception for OpenAI service errors."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


@dataclass(slots=True)
class FunctionCallResult:
    arguments: dict[str, Any]
    model: str
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class OpenAIService:
    """
    Thin async wrapper over the chat-completions API.

    The client is created on first use so the application can import and
    serve health checks without an API key configured.
    """

    def __init__(self):
        self._client: AsyncOpenAI | None = None

    @property
    def configured(self) -> bool:
        return bool(settings.OPENAI_API_KEY)

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = self._initialize_client()
        return self._client

    def _initialize_client(self) -> AsyncOpenAI:
        if not settings.OPENAI_API_KEY:
            raise OpenAIServiceError("OPENAI_API_KEY not configured in settings", recoverable=False)

        # Retries are handled here, not by the SDK
        client = AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
            max_retries=0,
        )
        logger.info(
            "OpenAI client initialized",
            model=settings.OPENAI_MODEL,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
        )
        return client

    async def call_function(
        self,
        *,
        system_prompt: str,
        user_content: str,
        function_name: str,
        function_description: str,
        parameters: dict[str, Any],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> FunctionCallResult:
        """
        Ask the model to answer through one forced function call.

        Raises:
            OpenAIExtractionError: The response was truncated, had no tool
                call, or carried arguments that are not JSON.
            OpenAIServiceError: The API kept failing after all retries.
        """
        response = await self._call_openai_with_retry(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            tools=[
                {
                    "type": "function",
                    "function": {
                        "name": function_name,
                        "description": function_description,
                        "parameters": parameters,
                    },
                }
            ],
            tool_choice={"type": "function", "function": {"name": function_name}},
            temperature=temperature,
            max_tokens=max_tokens,
        )

        usage = response.usage
        billed = {
            "model": response.model or model,
            "input_tokens": usage.prompt_tokens if usage else 0,
            "output_tokens": usage.completion_tokens if usage else 0,
        }

        if not response.choices:
            raise OpenAIExtractionError("Empty response from OpenAI API", **billed)

        choice = response.choices[0]
        if choice.finish_reason == "length":
            # Retrying with the same max_tokens would truncate again
            raise OpenAIExtractionError(
                f"Response truncated at max_tokens={max_tokens}", recoverable=False, **billed
            )

        tool_calls = choice.message.tool_calls or []
        if not tool_calls:
            raise OpenAIExtractionError(f"Model did not call function '{function_name}'", **billed)

        raw_arguments = tool_calls[0].function.arguments
        try:
            arguments = json.loads(raw_arguments)
        except json.JSONDecodeError as e:
            logger.error(
                "Failed to parse function arguments as JSON",
                function=function_name,
                error=str(e),
                raw_arguments=raw_arguments[:200],
            )
            raise OpenAIExtractionError("OpenAI returned invalid JSON arguments", **billed) from e

        if not isinstance(arguments, dict):
            raise OpenAIExtractionError("Function arguments must be a JSON object", **billed)

        return FunctionCallResult(arguments=arguments, **billed)

    async def _call_openai_with_retry(self, **request: Any):
        """Call OpenAI API with retry logic for transient failures."""

        last_error = None
        max_retries = settings.OPENAI_MAX_RETRIES
        attempts = max_retries + 1

        for attempt in range(attempts):
            try:
                return await self.client.chat.completions.create(**request)

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)

                logger.warning(
                    "OpenAI rate limit hit, retrying",
                    attempt=attempt + 1,
                    wait_time=wait_time,
                    error=str(e),
                )

                if attempt < attempts - 1:
                    await asyncio.sleep(wait_time)

            except openai.APITimeoutError as e:
                last_error = e
                logger.warning(
                    "OpenAI API timeout, retrying",
                    attempt=attempt + 1,
                    timeout=settings.OPENAI_TIMEOUT_SECONDS,
                    error=str(e),
                )

            except openai.APIStatusError as e:
                last_error = e
                # Don't retry on client errors (4xx)
                if 400 <= e.status_code < 500:
                    logger.error("OpenAI client error (not retrying)", error=str(e))
                    raise OpenAIServiceError(
                        f"OpenAI rejected the request: {e}", recoverable=False
                    ) from e

                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

            except openai.APIError as e:
                last_error = e
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

        logger.error(
            "OpenAI API call failed after all retries",
            max_retries=max_retries,
            final_error=str(last_error),
        )

        raise OpenAIServiceError(
            f"OpenAI API failed after {attempts} attempts: {last_error}",
            recoverable=True,
        ) from last_error

    async def health_check(self) -> dict[str, Any]:
        """
        Configuration-level health check.

        Does not spend tokens; readiness only needs to know that analysis
        calls can be attempted.
        """
        return {
            "healthy": self.configured,
            "service": "openai_service",
            "client_initialized": self._client is not None,
            "configuration": {
                "model": settings.OPENAI_MODEL,
                "timeout_seconds": settings.OPENAI_TIMEOUT_SECONDS,
                "max_retries": settings.OPENAI_MAX_RETRIES,
            },
            **({} if self.configured else {"error": "OPENAI_API_KEY not set"}),
        }


# Singleton instance for application use
openai_service = OpenAIService()


async def openai_service_health() -> dict[str, Any]:
    """Check OpenAI service health."""
    return await openai_service.health_check()
