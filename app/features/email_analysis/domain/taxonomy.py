"""
Fixed vocabularies shared by the analyzers, the stored envelope and the API.

Each vocabulary is declared once as a Literal so pydantic can validate it
and the model-facing JSON schema can list it; the tuple form is derived
from the Literal for membership checks.
"""

from typing import Literal, get_args

Category = Literal[
    "newsletters_creator",
    "newsletters_industry",
    "news_politics",
    "product_updates",
    "local",
    "shopping",
    "travel",
    "finance",
    "family",
    "clients",
    "work",
    "personal_friends_family",
    "notifications",
]

QuickAction = Literal[
    "respond", "review", "archive", "save", "calendar", "unsubscribe", "follow_up", "none"
]

SignalStrength = Literal["high", "medium", "low", "noise"]

ReplyWorthiness = Literal["must_reply", "should_reply", "optional_reply", "no_reply"]

ActionType = Literal[
    "respond",
    "review",
    "create",
    "schedule",
    "decide",
    "pay",
    "submit",
    "register",
    "book",
    "none",
]

RelationshipSignal = Literal["positive", "neutral", "negative", "unknown"]

LinkType = Literal[
    "article",
    "registration",
    "document",
    "video",
    "product",
    "tool",
    "social",
    "unsubscribe",
    "other",
]

ContentType = Literal[
    "single_topic", "multi_topic_digest", "curated_links", "personal_update", "transactional"
]

TaskStatus = Literal["pending", "in_progress", "completed"]

TaskPriority = Literal["high", "medium", "low"]

EMAIL_CATEGORIES: tuple[str, ...] = get_args(Category)
QUICK_ACTIONS: tuple[str, ...] = get_args(QuickAction)
SIGNAL_STRENGTHS: tuple[str, ...] = get_args(SignalStrength)
REPLY_WORTHINESS: tuple[str, ...] = get_args(ReplyWorthiness)
ACTION_TYPES: tuple[str, ...] = get_args(ActionType)
RELATIONSHIP_SIGNALS: tuple[str, ...] = get_args(RelationshipSignal)
LINK_TYPES: tuple[str, ...] = get_args(LinkType)
CONTENT_TYPES: tuple[str, ...] = get_args(ContentType)

# Secondary labels the categorizer may attach; anything else is dropped.
EMAIL_LABELS: frozenset[str] = frozenset(
    {
        "needs_reply",
        "needs_decision",
        "needs_review",
        "needs_approval",
        "urgent",
        "has_deadline",
        "time_sensitive",
        "from_vip",
        "new_contact",
        "networking_opportunity",
        "has_attachment",
        "has_link",
        "has_question",
        "local_event",
        "family_related",
        "community",
        "invoice",
        "receipt",
        "payment_due",
        "meeting_request",
        "rsvp_needed",
        "appointment",
        "educational",
        "industry_news",
        "job_opportunity",
    }
)


def priority_from_urgency(urgency_score: int) -> str:
    """Bucket a 1-10 urgency score into the task priority shown in the UI."""
    if urgency_score >= 8:
        return "high"
    if urgency_score >= 5:
        return "medium"
    return "low"
