"""
Cluster labelling via the LLM provider layer.

Each cluster gets a short (2-4 word) specific label generated from a random
sample of member summaries and the cluster's top keywords. When the LLM is
unavailable or returns nothing, the label falls back to the capitalized first
keyword.
"""

import logging
import random
from typing import List, Optional

from src.llm import BaseLLMClient, GenerationConfig, get_client
from src.profiles.models import Profile

from .clusterer import DetectedCluster

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 5
BACKGROUND_CHARS = 200
EXPERTISE_CHARS = 150
INTERESTS_CHARS = 100

# Labels are a few words; thinking tokens would otherwise eat the output budget
LABEL_CONFIG = GenerationConfig(temperature=0.7, max_output_tokens=30, thinking_budget=0)

QUOTE_CHARS = '"\'“”‘’`'

LABEL_PROMPT = """You are analyzing a professional community cluster to create a precise, actionable label.

SAMPLE MEMBERS FROM THIS CLUSTER:
{summaries}

TOP KEYWORDS: {keywords}

Your task: Generate a 2-4 word label that captures:
1. The PRIMARY domain or expertise this group shares
2. Their common FOCUS or approach (if clear from the data)
3. What makes this cluster DISTINCT from generic tech/business groups

Guidelines:
- Be SPECIFIC: "Climate Tech Hardware" not just "Climate Tech"
- Include the TYPE of work: "Solutions", "Innovation", "Development", "Research", etc.
- Avoid overly broad terms like "Technology" or "Business" alone
- Consider what they BUILD, not just what they know
- Make it sound natural and professional

Examples of GOOD labels:
- "Rural Telehealth Platforms"
- "Sustainable Supply Chain Tech"
- "AI-Powered EdTech Solutions"

Examples of BAD labels:
- "Technology" (too broad)
- "Developers" (not specific enough)
- "Business Solutions" (generic)

Return ONLY the label, nothing else. No quotes, no explanation."""


def fallback_label(keywords: List[str]) -> str:
    """Capitalized first keyword, or a generic name for a keyword-less cluster."""
    if not keywords:
        return "Community Cluster"
    first = keywords[0]
    return first[:1].upper() + first[1:]


def clean_label(text: Optional[str]) -> str:
    """Trim whitespace and surrounding quote characters."""
    return (text or '').strip().strip(QUOTE_CHARS).strip()


def summarize_member(profile: Profile, recent_topics: Optional[List[str]] = None) -> str:
    background = profile.background[:BACKGROUND_CHARS] or 'N/A'
    expertise = profile.expertise[:EXPERTISE_CHARS] or 'N/A'
    interests = profile.interests[:INTERESTS_CHARS] or 'N/A'

    lines = [
        f"- Background: {background}",
        f"  Expertise: {expertise}",
        f"  Interests: {interests}",
    ]
    if recent_topics:
        lines.append(f"  Recent topics: {', '.join(recent_topics)[:INTERESTS_CHARS]}")
    return '\n'.join(lines)


class ClusterLabeler:
    """
    Generates human-readable cluster labels.

    Args:
        client: LLM client (created lazily from LLM_MODEL if None)
        model: Model name or alias used when creating the client
        rng: Random source for member sampling (seed it for reproducible prompts)
    """

    def __init__(
        self,
        client: Optional[BaseLLMClient] = None,
        model: Optional[str] = None,
        rng: Optional[random.Random] = None
    ):
        self._client = client
        self.model = model
        self.rng = rng or random.Random()

    @property
    def client(self) -> BaseLLMClient:
        if self._client is None:
            self._client = get_client(self.model)
        return self._client

    def sample_members(self, members: List[Profile]) -> List[Profile]:
        if len(members) <= SAMPLE_SIZE:
            return list(members)
        return self.rng.sample(list(members), SAMPLE_SIZE)

    def build_prompt(self, cluster: DetectedCluster) -> str:
        samples = self.sample_members(cluster.members)
        summaries = '\n\n'.join(
            summarize_member(m, cluster.recent_topics.get(m.user_id)) for m in samples
        )
        return LABEL_PROMPT.format(summaries=summaries, keywords=', '.join(cluster.keywords))

    def label(self, cluster: DetectedCluster) -> str:
        """
        Label one cluster.

        Returns:
            The cleaned LLM label, or the keyword fallback on any failure
        """
        prompt = self.build_prompt(cluster)

        try:
            response = self.client.generate(prompt, config=LABEL_CONFIG)
            label = clean_label(response.text)
        except Exception as e:
            logger.warning(f"Failed to generate cluster label via LLM: {e}")
            label = ''

        if not label:
            label = fallback_label(cluster.keywords)
            logger.info(f"  Using keyword fallback label: {label}")
        else:
            logger.info(f"  Generated label: {label}")

        return label

    def label_all(self, clusters: List[DetectedCluster]) -> List[str]:
        return [self.label(cluster) for cluster in clusters]
