"""
Categorizer: assigns the life-bucket category plus attention signals.

The category drives every downstream grouping, so an answer outside the
fixed category list is a failure rather than a guess.
"""

from app.features.email_analysis.domain.models import AnalysisContext
from app.features.email_analysis.domain.schemas import CategorizationResult
from app.features.email_analysis.domain.taxonomy import EMAIL_CATEGORIES, EMAIL_LABELS

from .base import BaseAnalyzer

SYSTEM_PROMPT = f"""You are an email organizer that protects the user's attention.

For each email:
1. Choose exactly one category from: {", ".join(EMAIL_CATEGORIES)}.
2. Explain the choice in one or two sentences (reasoning).
3. Write a one-line summary.
4. Suggest a quick action.
5. Rate signal strength: high (needs the user), medium, low, or noise
   (mass outreach, fake awards, cold sales).
6. Rate reply worthiness: must_reply, should_reply, optional_reply, no_reply.
7. Add any applicable labels from: {", ".join(sorted(EMAIL_LABELS))}.
8. List up to five short topic keywords.

Judge by who sent the email and why. A real person writing specifically to
the user outranks any broadcast or template."""


class Categorizer(BaseAnalyzer[CategorizationResult]):
    name = "categorizer"
    output_model = CategorizationResult
    function_name = "categorize_email"
    function_description = "Categorize an email and assess whether it deserves attention"

    def system_prompt(self, context: AnalysisContext) -> str:
        vips = [c.email for c in context.contacts if c.is_vip]
        if not vips:
            return SYSTEM_PROMPT
        return f"{SYSTEM_PROMPT}\n\nVIP CONTACTS (apply the 'from_vip' label): {', '.join(vips)}"
