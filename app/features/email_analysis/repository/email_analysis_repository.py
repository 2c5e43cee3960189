"""
Persistence layer for the email analysis feature.

This is the only module that reads or writes analyzed_at/analysis_error.
Every write sets both columns in one statement so the pair always encodes
exactly one AnalysisState.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from app.db.pool import db_pool
from app.features.email_analysis.domain import (
    AnalysisState,
    DerivedTask,
    EmailRecord,
    KnownContact,
    MergedAnalysis,
    RunSummary,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ANALYZER_VERSION = "1.0.0"
MAX_ERROR_CHARS = 500


class EmailAnalysisRepositoryError(DatabaseError):
    """More specific exception for analysis persistence failures."""


class EmailAlreadyAnalyzedError(EmailAnalysisRepositoryError):
    """A guarded save found the email already ANALYZED by another run."""

    def __init__(self, email_id: str):
        super().__init__(
            f"Email {email_id} was analyzed by another run",
            operation="save_analysis",
            recoverable=False,
        )
        self.email_id = email_id


class EmailAnalysisRepository:
    """Queries and updates backing batch analysis, retry and run logging."""

    EMAIL_SELECT_COLUMNS = """
        id, user_id, subject, sender_email, sender_name, date, snippet,
        body_text, gmail_labels, is_archived, category, analyzed_at, analysis_error
    """

    @classmethod
    def _row_to_email(cls, row: dict[str, Any]) -> EmailRecord:
        return EmailRecord(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            subject=row.get("subject"),
            sender_email=row.get("sender_email") or "",
            sender_name=row.get("sender_name"),
            date=row.get("date"),
            snippet=row.get("snippet"),
            body_text=row.get("body_text"),
            gmail_labels=list(row.get("gmail_labels") or []),
            is_archived=bool(row.get("is_archived")),
            state=AnalysisState.from_columns(row.get("analyzed_at"), row.get("analysis_error")),
            category=row.get("category"),
        )

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_candidates(
        cls, user_id: str, limit: int, skip_analyzed: bool = True
    ) -> list[EmailRecord]:
        """Unarchived emails for one owner, newest first."""
        unanalyzed_filter = (
            "AND analyzed_at IS NULL AND analysis_error IS NULL" if skip_analyzed else ""
        )
        query = f"""
            SELECT {cls.EMAIL_SELECT_COLUMNS}
            FROM emails
            WHERE user_id = %s
              AND is_archived = false
              {unanalyzed_filter}
            ORDER BY date DESC NULLS LAST
            LIMIT %s
        """

        rows = await fetch_all(query, (user_id, limit))
        return [cls._row_to_email(row) for row in rows]

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_by_ids(cls, user_id: str, email_ids: list[str]) -> list[EmailRecord]:
        if not email_ids:
            return []

        query = f"""
            SELECT {cls.EMAIL_SELECT_COLUMNS}
            FROM emails
            WHERE user_id = %s
              AND id = ANY(%s)
        """

        rows = await fetch_all(query, (user_id, list(email_ids)))
        return [cls._row_to_email(row) for row in rows]

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_email(cls, user_id: str, email_id: str) -> EmailRecord | None:
        query = f"SELECT {cls.EMAIL_SELECT_COLUMNS} FROM emails WHERE user_id = %s AND id = %s"
        row = await fetch_one(query, (user_id, email_id))
        return cls._row_to_email(row) if row else None

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_contacts(cls, user_id: str) -> list[KnownContact]:
        query = """
            SELECT id, email, name, company, relationship_type, COALESCE(is_vip, false) AS is_vip
            FROM contacts
            WHERE user_id = %s
            ORDER BY is_vip DESC, email_count DESC NULLS LAST
        """

        rows = await fetch_all(query, (user_id,))
        return [
            KnownContact(
                id=str(row["id"]),
                email=row["email"],
                name=row.get("name"),
                company=row.get("company"),
                relationship_type=row.get("relationship_type"),
                is_vip=bool(row.get("is_vip")),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # State writes
    # ------------------------------------------------------------------

    @classmethod
    async def save_analysis(
        cls,
        email: EmailRecord,
        analysis: MergedAnalysis,
        task: DerivedTask | None = None,
        *,
        only_if_unanalyzed: bool = False,
    ) -> int:
        """
        Persist a successful analysis in one transaction.

        Writes the envelope (ANALYZED: analyzed_at set, analysis_error
        cleared), upserts the full analyzer outputs, and inserts the derived
        task if there is one. Returns the number of tasks created.

        With only_if_unanalyzed the envelope update matches only rows that
        are not ANALYZED yet; when another run got there first nothing is
        written and EmailAlreadyAnalyzedError is raised.
        """
        envelope = analysis.envelope()
        payloads = analysis.analyzer_payloads()

        unanalyzed_guard = "AND analyzed_at IS NULL" if only_if_unanalyzed else ""
        update_query = f"""
            UPDATE emails
            SET category = %s,
                quick_action = %s,
                summary = %s,
                signal_strength = %s,
                reply_worthiness = %s,
                urgency_score = %s,
                labels = %s,
                topics = %s,
                contact_id = COALESCE(%s, contact_id),
                analyzed_at = NOW(),
                analysis_error = NULL,
                updated_at = NOW()
            WHERE id = %s AND user_id = %s
              {unanalyzed_guard}
        """

        analysis_query = """
            INSERT INTO email_analyses (
                email_id, user_id, categorization, action_extraction,
                relationship_tagging, content_digest, tokens_used,
                processing_time_ms, analyzer_version
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (email_id) DO UPDATE
            SET categorization = EXCLUDED.categorization,
                action_extraction = EXCLUDED.action_extraction,
                relationship_tagging = EXCLUDED.relationship_tagging,
                content_digest = EXCLUDED.content_digest,
                tokens_used = EXCLUDED.tokens_used,
                processing_time_ms = EXCLUDED.processing_time_ms,
                analyzer_version = EXCLUDED.analyzer_version,
                updated_at = NOW()
        """

        task_query = """
            INSERT INTO actions (
                user_id, email_id, contact_id, title, description, action_type,
                priority, urgency_score, deadline, estimated_minutes, status
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """

        try:
            async with db_pool.transaction() as conn:
                updated = await execute_query(
                    update_query,
                    (
                        envelope["category"],
                        envelope["quick_action"],
                        envelope["summary"],
                        envelope["signal_strength"],
                        envelope["reply_worthiness"],
                        envelope["urgency_score"],
                        envelope["labels"],
                        envelope["topics"],
                        envelope["contact_id"],
                        email.id,
                        email.user_id,
                    ),
                    connection=conn,
                )
                if updated == 0:
                    if only_if_unanalyzed and await fetch_one(
                        "SELECT 1 AS found FROM emails WHERE id = %s AND user_id = %s",
                        (email.id, email.user_id),
                        connection=conn,
                    ):
                        raise EmailAlreadyAnalyzedError(email.id)
                    raise EmailAnalysisRepositoryError(
                        f"Email {email.id} no longer exists", operation="save_analysis"
                    )

                await execute_query(
                    analysis_query,
                    (
                        email.id,
                        email.user_id,
                        Jsonb(payloads["categorization"]),
                        _jsonb_or_none(payloads["action_extraction"]),
                        _jsonb_or_none(payloads["relationship_tagging"]),
                        _jsonb_or_none(payloads["content_digest"]),
                        analysis.tokens_used,
                        analysis.processing_time_ms,
                        ANALYZER_VERSION,
                    ),
                    connection=conn,
                )

                if task is not None:
                    await execute_query(
                        task_query,
                        (
                            task.user_id,
                            task.email_id,
                            task.contact_id,
                            task.title,
                            task.description,
                            task.action_type,
                            task.priority,
                            task.urgency_score,
                            task.deadline,
                            task.estimated_minutes,
                            task.status,
                        ),
                        connection=conn,
                    )

        except psycopg.Error as e:
            # Commit and rollback errors bypass the helpers' wrapping
            raise EmailAnalysisRepositoryError(
                f"Failed to save analysis: {e}", operation="save_analysis"
            ) from e

        logger.debug(
            "Analysis persisted",
            email_id=email.id,
            category=envelope["category"],
            task_created=task is not None,
        )
        return 1 if task is not None else 0

    @classmethod
    async def mark_failed(
        cls, email: EmailRecord, error_message: str, *, only_if_unanalyzed: bool = False
    ) -> bool:
        """
        Record FAILED: analysis_error set, analyzed_at cleared.

        With only_if_unanalyzed a row another run already ANALYZED is left
        alone. Returns whether the row was updated.
        """
        unanalyzed_guard = "AND analyzed_at IS NULL" if only_if_unanalyzed else ""
        query = f"""
            UPDATE emails
            SET analysis_error = %s,
                analyzed_at = NULL,
                updated_at = NOW()
            WHERE id = %s AND user_id = %s
              {unanalyzed_guard}
        """

        truncated_error = (error_message or "Unknown error")[:MAX_ERROR_CHARS]
        updated = await execute_query(query, (truncated_error, email.id, email.user_id))
        return updated > 0

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def reset_analysis_state(cls, user_id: str, email_ids: list[str]) -> int:
        """Return the given emails to UNANALYZED in a single statement."""
        if not email_ids:
            return 0

        query = """
            UPDATE emails
            SET analyzed_at = NULL,
                analysis_error = NULL,
                updated_at = NOW()
            WHERE user_id = %s
              AND id = ANY(%s)
        """

        reset = await execute_query(query, (user_id, list(email_ids)))
        logger.info("Analysis state reset", user_id=user_id, requested=len(email_ids), reset=reset)
        return reset

    # ------------------------------------------------------------------
    # Run bookkeeping
    # ------------------------------------------------------------------

    @classmethod
    async def insert_run_summary(cls, summary: RunSummary) -> None:
        query = """
            INSERT INTO sync_logs (
                user_id, sync_type, status, emails_fetched, emails_analyzed,
                errors_count, duration_ms, error_message, started_at, completed_at
            )
            VALUES (%s, 'analysis', %s, %s, %s, %s, %s, %s, %s, NOW())
        """

        started_at = datetime.now(UTC) - timedelta(milliseconds=summary.duration_ms)
        await execute_query(
            query,
            (
                summary.user_id,
                summary.status,
                summary.emails_fetched,
                summary.emails_analyzed,
                summary.errors_count,
                summary.duration_ms,
                summary.error_message[:MAX_ERROR_CHARS] if summary.error_message else None,
                started_at,
            ),
        )

    @classmethod
    async def record_api_usage(
        cls,
        *,
        user_id: str,
        email_id: str,
        analyzer_name: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        estimated_cost: float,
        duration_ms: int,
        success: bool,
        error_message: str | None = None,
    ) -> None:
        """Best-effort usage log; failures are logged and swallowed."""
        query = """
            INSERT INTO api_usage_logs (
                user_id, service, endpoint, model, tokens_input, tokens_output,
                tokens_total, estimated_cost, email_id, analyzer_name,
                duration_ms, success, error_message
            )
            VALUES (%s, 'openai', 'chat.completions', %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """

        try:
            await execute_query(
                query,
                (
                    user_id,
                    model,
                    input_tokens,
                    output_tokens,
                    input_tokens + output_tokens,
                    estimated_cost,
                    email_id,
                    analyzer_name,
                    duration_ms,
                    success,
                    error_message[:MAX_ERROR_CHARS] if error_message else None,
                ),
            )
        except DatabaseError as e:
            logger.warning(
                "Failed to record API usage",
                email_id=email_id,
                analyzer=analyzer_name,
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Job queries
    # ------------------------------------------------------------------

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_failed_for_retry(
        cls, limit: int, cooldown_hours: int, max_age_days: int
    ) -> list[dict[str, str]]:
        """Failed emails past the cooldown but not yet stale, oldest first."""
        query = """
            SELECT id, user_id
            FROM emails
            WHERE analysis_error IS NOT NULL
              AND is_archived = false
              AND updated_at < NOW() - make_interval(hours => %s)
              AND updated_at > NOW() - make_interval(days => %s)
            ORDER BY updated_at ASC
            LIMIT %s
        """

        rows = await fetch_all(query, (cooldown_hours, max_age_days, limit))
        return [{"id": str(row["id"]), "user_id": str(row["user_id"])} for row in rows]

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_users_with_pending(cls, limit: int) -> list[str]:
        query = """
            SELECT user_id
            FROM emails
            WHERE is_archived = false
              AND analyzed_at IS NULL
              AND analysis_error IS NULL
            GROUP BY user_id
            ORDER BY MAX(date) DESC NULLS LAST
            LIMIT %s
        """

        rows = await fetch_all(query, (limit,))
        return [str(row["user_id"]) for row in rows]


def _jsonb_or_none(payload: dict | None) -> Jsonb | None:
    return Jsonb(payload) if payload is not None else None
