"""
AI analyzers for the email analysis feature.
"""

from dataclasses import dataclass

from app.config import settings
from app.services.openai_service import OpenAIService

from .action_extractor import ActionExtractor
from .base import AnalyzerFailure, AnalyzerResult, BaseAnalyzer, TokenUsage, truncate_body
from .categorizer import Categorizer
from .content_digest import ContentDigest
from .relationship_tagger import RelationshipTagger


@dataclass(slots=True)
class AnalyzerSet:
    """The categorizer plus whichever optional analyzers are enabled."""

    categorizer: BaseAnalyzer
    action_extractor: BaseAnalyzer | None = None
    relationship_tagger: BaseAnalyzer | None = None
    content_digest: BaseAnalyzer | None = None

    def enabled(self) -> list[BaseAnalyzer]:
        return [
            analyzer
            for analyzer in (
                self.categorizer,
                self.action_extractor,
                self.relationship_tagger,
                self.content_digest,
            )
            if analyzer is not None
        ]


def build_analyzer_set(transport: OpenAIService | None = None) -> AnalyzerSet:
    enabled = settings.enabled_analyzers()
    return AnalyzerSet(
        categorizer=Categorizer(transport),
        action_extractor=ActionExtractor(transport) if enabled["action_extractor"] else None,
        relationship_tagger=(
            RelationshipTagger(transport) if enabled["relationship_tagger"] else None
        ),
        content_digest=ContentDigest(transport) if enabled["content_digest"] else None,
    )


__all__ = [
    "ActionExtractor",
    "AnalyzerFailure",
    "AnalyzerResult",
    "AnalyzerSet",
    "BaseAnalyzer",
    "Categorizer",
    "ContentDigest",
    "RelationshipTagger",
    "TokenUsage",
    "build_analyzer_set",
    "truncate_body",
]
