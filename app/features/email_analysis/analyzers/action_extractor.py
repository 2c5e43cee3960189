"""
ActionExtractor: finds what the email asks the user to do.

Returns every action item ordered by priority; the processor turns the
first one into a task row.
"""

from datetime import UTC, datetime

from app.features.email_analysis.domain.models import AnalysisContext
from app.features.email_analysis.domain.schemas import ActionExtractionResult

from .base import BaseAnalyzer

SYSTEM_PROMPT = """You extract action items from emails.

Set has_action to false for newsletters, receipts, notifications and any
email that only informs. Otherwise list every distinct request made of the
user, with:
- type: respond, review, create, schedule, decide, pay, submit, register, book
- a short imperative title
- deadline as an ISO 8601 date when one is stated or clearly implied
- priority, where 1 is the most important
- estimated_minutes when you can judge the effort

urgency_score is the highest urgency across the actions:
1-3 can wait a week, 4-6 this week, 7-8 within two days, 9-10 today."""


class ActionExtractor(BaseAnalyzer[ActionExtractionResult]):
    name = "action_extractor"
    output_model = ActionExtractionResult
    function_name = "extract_actions"
    function_description = "Extract all action items from an email with priority and deadline"

    def system_prompt(self, context: AnalysisContext) -> str:
        # Relative deadlines ("by Friday") need an anchor date
        today = datetime.now(UTC).date().isoformat()
        return f"{SYSTEM_PROMPT}\n\nToday's date is {today}."
