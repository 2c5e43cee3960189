"""
ContentDigest: gist, key points and typed links for reading later.
"""

from app.features.email_analysis.domain.models import AnalysisContext
from app.features.email_analysis.domain.schemas import ContentDigestResult
from app.features.email_analysis.domain.taxonomy import LINK_TYPES

from .base import BaseAnalyzer

SYSTEM_PROMPT = f"""You digest emails so the user can skip reading them.

- gist: one or two sentences with the single most useful takeaway.
- key_points: two to five points in the order they appear.
- links: only links worth opening (skip tracking pixels, social footers
  and legal boilerplate), each tagged with one of: {", ".join(LINK_TYPES)}.
  Mark is_main_content for the link the email is about.
- content_type: single_topic, multi_topic_digest, curated_links,
  personal_update or transactional."""


class ContentDigest(BaseAnalyzer[ContentDigestResult]):
    name = "content_digest"
    output_model = ContentDigestResult
    function_name = "digest_content"
    function_description = "Summarize an email into a gist, key points and links"

    def system_prompt(self, context: AnalysisContext) -> str:
        return SYSTEM_PROMPT
