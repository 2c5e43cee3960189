"""
RelationshipTagger: links the sender to one of the owner's known contacts.

Cheap paths first: an exact sender-address match needs no model call, and
an empty roster can only produce "no match". The model is consulted for the
fuzzy cases (new address, assistant writing on someone's behalf), and any
contact it names must exist in the roster.
"""

from app.features.email_analysis.domain.models import (
    AnalysisContext,
    EmailRecord,
    KnownContact,
)
from app.features.email_analysis.domain.schemas import RelationshipTagResult
from app.infrastructure.observability.logging import get_logger

from .base import AnalyzerResult, BaseAnalyzer

logger = get_logger(__name__)

MAX_ROSTER_IN_PROMPT = 50

SYSTEM_PROMPT = """You decide whether an email comes from, or is about, one of
the user's known contacts listed below. Match on name, company, signature
and context, not only on the sender address. If none of the contacts fits,
set is_known_contact to false. Never invent a contact that is not listed.
Also report the relationship tone (positive, neutral, negative, unknown)
and any project name the email refers to."""


def resolve_contact(claimed: str | None, contacts: list[KnownContact]) -> KnownContact | None:
    """Find the roster entry the model meant: exact name, exact company, then substring."""
    if not claimed:
        return None
    needle = claimed.strip().lower()
    if not needle:
        return None

    for contact in contacts:
        if contact.name and contact.name.strip().lower() == needle:
            return contact
    for contact in contacts:
        if contact.company and contact.company.strip().lower() == needle:
            return contact
    for contact in contacts:
        name = (contact.name or "").strip().lower()
        if name and (needle in name or name in needle):
            return contact
    return None


class RelationshipTagger(BaseAnalyzer[RelationshipTagResult]):
    name = "relationship_tagger"
    output_model = RelationshipTagResult
    function_name = "tag_relationship"
    function_description = "Match an email to one of the user's known contacts"

    async def analyze(
        self, email: EmailRecord, context: AnalysisContext
    ) -> AnalyzerResult[RelationshipTagResult]:
        if not context.contacts:
            return AnalyzerResult(analyzer=self.name, data=RelationshipTagResult.no_match())

        direct = context.find_by_email(email.sender_email)
        if direct is not None:
            data = RelationshipTagResult(
                is_known_contact=True,
                contact_name=direct.name or direct.email,
                match_confidence=1.0,
                confidence=1.0,
                contact_id=direct.id,
            )
            return AnalyzerResult(analyzer=self.name, data=data)

        return await super().analyze(email, context)

    def system_prompt(self, context: AnalysisContext) -> str:
        lines = []
        for contact in context.contacts[:MAX_ROSTER_IN_PROMPT]:
            details = [contact.name or contact.email, f"<{contact.email}>"]
            if contact.company:
                details.append(f"({contact.company})")
            if contact.relationship_type:
                details.append(f"[{contact.relationship_type}]")
            lines.append("- " + " ".join(details))
        return f"{SYSTEM_PROMPT}\n\nKNOWN CONTACTS:\n" + "\n".join(lines)

    def post_process(
        self, data: RelationshipTagResult, email: EmailRecord, context: AnalysisContext
    ) -> RelationshipTagResult:
        if not data.is_known_contact:
            return data

        contact = resolve_contact(data.contact_name, context.contacts)
        if contact is None:
            logger.info(
                "Model named a contact that is not in the roster",
                email_id=email.id,
                claimed=data.contact_name,
            )
            return RelationshipTagResult.no_match()

        return data.model_copy(update={"contact_id": contact.id, "contact_name": contact.name})
