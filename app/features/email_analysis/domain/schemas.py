"""
Validated output schemas for the analyzers.

Model output is never trusted as-is: every function-call payload is parsed
into one of these models. The same models produce the JSON schema sent to
the model, so the contract the model sees and the contract we enforce can
not drift apart.

Validation policy:
    - category is load-bearing and fails closed (no coercion).
    - secondary enums are coerced to a neutral default.
    - confidence-like numbers are clamped into range.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.json_schema import SkipJsonSchema

from .taxonomy import (
    ACTION_TYPES,
    CONTENT_TYPES,
    EMAIL_LABELS,
    LINK_TYPES,
    QUICK_ACTIONS,
    RELATIONSHIP_SIGNALS,
    REPLY_WORTHINESS,
    SIGNAL_STRENGTHS,
    ActionType,
    Category,
    ContentType,
    LinkType,
    QuickAction,
    RelationshipSignal,
    ReplyWorthiness,
    SignalStrength,
)

MAX_SUMMARY_CHARS = 500
MAX_TOPICS = 5


def _coerce_choice(value: Any, allowed: tuple[str, ...], default: str) -> str:
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in allowed:
            return normalized
    return default


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return min(max(number, low), high)


class AnalyzerOutput(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    confidence: float = Field(default=0.5, ge=0.0, le=1.0, description="0-1 confidence")

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.5)


class CategorizationResult(AnalyzerOutput):
    category: Category = Field(description="Exactly one life bucket for this email")
    reasoning: str = Field(description="One or two sentences explaining the category")
    summary: str = Field(default="", description="One-line summary of the email")
    quick_action: QuickAction = Field(default="review", description="Suggested next step")
    signal_strength: SignalStrength = Field(
        default="medium", description="How much this email deserves the user's attention"
    )
    reply_worthiness: ReplyWorthiness = Field(
        default="no_reply", description="Whether the user should reply"
    )
    labels: list[str] = Field(default_factory=list, description="Secondary labels")
    topics: list[str] = Field(default_factory=list, description="Up to 5 short topic keywords")

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> Any:
        # Case and whitespace only; out-of-enum values must fail validation
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("quick_action", mode="before")
    @classmethod
    def _coerce_quick_action(cls, value: Any) -> str:
        return _coerce_choice(value, QUICK_ACTIONS, "review")

    @field_validator("signal_strength", mode="before")
    @classmethod
    def _coerce_signal(cls, value: Any) -> str:
        return _coerce_choice(value, SIGNAL_STRENGTHS, "medium")

    @field_validator("reply_worthiness", mode="before")
    @classmethod
    def _coerce_reply(cls, value: Any) -> str:
        return _coerce_choice(value, REPLY_WORTHINESS, "no_reply")

    @field_validator("summary", mode="before")
    @classmethod
    def _trim_summary(cls, value: Any) -> str:
        return str(value or "").strip()[:MAX_SUMMARY_CHARS]

    @field_validator("labels", mode="before")
    @classmethod
    def _known_labels(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        labels = []
        for item in value:
            label = str(item).strip().lower()
            if label in EMAIL_LABELS and label not in labels:
                labels.append(label)
        return labels

    @field_validator("topics", mode="before")
    @classmethod
    def _clean_topics(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        topics = []
        for item in value:
            topic = str(item).strip().lower()
            if topic and topic not in topics:
                topics.append(topic)
        return topics[:MAX_TOPICS]


class ActionItem(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    type: ActionType = Field(default="review", description="Kind of action required")
    title: str = Field(min_length=1, description="Short imperative title")
    description: str | None = None
    deadline: str | None = Field(default=None, description="ISO 8601 date or datetime")
    priority: int = Field(default=1, ge=1, description="1 is the most important action")
    estimated_minutes: int | None = Field(default=None, ge=0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> str:
        return _coerce_choice(value, ACTION_TYPES, "review")

    @field_validator("priority", mode="before")
    @classmethod
    def _floor_priority(cls, value: Any) -> int:
        return int(_clamp(value, 1, 99, 1))

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.5)

    def parsed_deadline(self) -> datetime | None:
        """Deadline as a datetime, or None when absent or not ISO formatted."""
        if not self.deadline:
            return None
        try:
            return datetime.fromisoformat(self.deadline)
        except ValueError:
            return None


class ActionExtractionResult(AnalyzerOutput):
    has_action: bool = Field(description="True when the email asks the user to do something")
    actions: list[ActionItem] = Field(
        default_factory=list, description="All action items, most important first"
    )
    urgency_score: int = Field(
        default=1, ge=1, le=10, description="Highest urgency across actions (1=low, 10=critical)"
    )

    @field_validator("urgency_score", mode="before")
    @classmethod
    def _clamp_urgency(cls, value: Any) -> int:
        return round(_clamp(value, 1, 10, 1))

    @model_validator(mode="after")
    def _order_actions(self) -> "ActionExtractionResult":
        actions = [a for a in self.actions if a.type != "none"] if self.has_action else []
        self.actions = sorted(actions, key=lambda a: a.priority)
        self.has_action = bool(self.actions)
        return self

    @property
    def primary_action(self) -> ActionItem | None:
        return self.actions[0] if self.actions else None


class RelationshipTagResult(AnalyzerOutput):
    is_known_contact: bool = Field(description="True when the sender is one of the listed contacts")
    contact_name: str | None = Field(default=None, description="Name of the matching contact")
    match_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    relationship_signal: RelationshipSignal = Field(
        default="unknown", description="Tone of the relationship in this email"
    )
    project_name: str | None = Field(default=None, description="Project mentioned, if any")
    # Resolved against the roster after validation, never supplied by the model
    contact_id: SkipJsonSchema[str | None] = None

    @field_validator("match_confidence", mode="before")
    @classmethod
    def _clamp_match(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.0)

    @field_validator("relationship_signal", mode="before")
    @classmethod
    def _coerce_signal(cls, value: Any) -> str:
        return _coerce_choice(value, RELATIONSHIP_SIGNALS, "unknown")

    @classmethod
    def no_match(cls) -> "RelationshipTagResult":
        return cls(is_known_contact=False, match_confidence=0.0, confidence=0.0)


class KeyPoint(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    point: str = Field(min_length=1)
    relevance: str | None = None


class LinkItem(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    url: str = Field(min_length=1)
    type: LinkType = "other"
    title: str | None = None
    description: str | None = None
    is_main_content: bool = False

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> str:
        return _coerce_choice(value, LINK_TYPES, "other")


class ContentDigestResult(AnalyzerOutput):
    gist: str = Field(min_length=1, description="One or two sentence gist")
    key_points: list[KeyPoint] = Field(
        default_factory=list, description="2-5 key points in reading order"
    )
    links: list[LinkItem] = Field(default_factory=list, description="Notable links")
    content_type: ContentType = "single_topic"

    @field_validator("key_points", mode="before")
    @classmethod
    def _accept_plain_points(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [{"point": item} if isinstance(item, str) else item for item in value]

    @field_validator("content_type", mode="before")
    @classmethod
    def _coerce_content_type(cls, value: Any) -> str:
        return _coerce_choice(value, CONTENT_TYPES, "single_topic")
