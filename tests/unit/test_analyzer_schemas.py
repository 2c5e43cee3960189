import pytest
from pydantic import ValidationError

from app.features.email_analysis.domain.schemas import (
    ActionExtractionResult,
    CategorizationResult,
    ContentDigestResult,
    RelationshipTagResult,
)


class TestCategorizationResult:
    def test_category_is_normalized_for_case_and_whitespace(self):
        result = CategorizationResult.model_validate({"category": "  Work ", "reasoning": "colleague"})

        assert result.category == "work"

    def test_unknown_category_fails_closed(self):
        with pytest.raises(ValidationError):
            CategorizationResult.model_validate({"category": "spam", "reasoning": "looks spammy"})

    def test_reasoning_is_required(self):
        with pytest.raises(ValidationError):
            CategorizationResult.model_validate({"category": "work"})

    def test_secondary_enums_are_coerced(self):
        result = CategorizationResult.model_validate(
            {
                "category": "finance",
                "reasoning": "bank",
                "quick_action": "panic",
                "signal_strength": "extreme",
                "reply_worthiness": 3,
            }
        )

        assert result.quick_action == "review"
        assert result.signal_strength == "medium"
        assert result.reply_worthiness == "no_reply"

    def test_labels_and_topics_are_cleaned(self):
        result = CategorizationResult.model_validate(
            {
                "category": "work",
                "reasoning": "r",
                "labels": ["Urgent", "made_up", "urgent", "needs_reply"],
                "topics": ["Q3", "q3", "budget", "hiring", "roadmap", "offsite", "extra"],
                "confidence": 7,
            }
        )

        assert result.labels == ["urgent", "needs_reply"]
        assert result.topics == ["q3", "budget", "hiring", "roadmap", "offsite"]
        assert result.confidence == 1.0

    def test_category_enum_is_in_function_schema(self):
        schema = CategorizationResult.model_json_schema()

        assert "work" in schema["properties"]["category"]["enum"]
        assert "category" in schema["required"]


class TestActionExtractionResult:
    def test_actions_sorted_and_none_dropped(self):
        result = ActionExtractionResult.model_validate(
            {
                "has_action": True,
                "urgency_score": 14,
                "actions": [
                    {"type": "review", "title": "Second", "priority": 2},
                    {"type": "none", "title": "Nothing", "priority": 1},
                    {"type": "dance", "title": "First", "priority": 1},
                ],
            }
        )

        assert [a.title for a in result.actions] == ["First", "Second"]
        assert result.actions[0].type == "review"
        assert result.urgency_score == 10
        assert result.primary_action.title == "First"

    def test_has_action_follows_surviving_actions(self):
        result = ActionExtractionResult.model_validate(
            {"has_action": True, "actions": [{"type": "none", "title": "x"}]}
        )

        assert result.has_action is False
        assert result.primary_action is None

    def test_bad_deadline_parses_to_none(self):
        result = ActionExtractionResult.model_validate(
            {"has_action": True, "actions": [{"title": "Call", "deadline": "next friday"}]}
        )

        assert result.actions[0].parsed_deadline() is None


def test_relationship_contact_id_not_offered_to_model():
    schema = RelationshipTagResult.model_json_schema()

    assert "contact_id" not in schema["properties"]


def test_content_digest_accepts_plain_key_points():
    result = ContentDigestResult.model_validate(
        {
            "gist": "Weekly roundup",
            "key_points": ["one", {"point": "two", "relevance": "high"}],
            "links": [{"url": "https://example.com", "type": "podcast"}],
            "content_type": "Multi_Topic_Digest",
        }
    )

    assert [p.point for p in result.key_points] == ["one", "two"]
    assert result.links[0].type == "other"
    assert result.content_type == "multi_topic_digest"
