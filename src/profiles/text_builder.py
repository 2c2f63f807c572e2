"""
Canonical identity text for profile embeddings.

Only background, expertise and interests are embedded so that clusters group
people by who they are. Availability and intent fields (how_i_help,
looking_for, open_to, current_work) stay out of the identity vector.
"""

import re
from typing import Optional

from .models import Profile

MIN_BACKGROUND_CHARS = 20
MIN_EXPERTISE_CHARS = 15
MIN_CLEANED_CHARS = 20

PLACEHOLDER_MARKERS = ('incomplete', 'profile not complete')

# Generic words that carry no identity signal
FILLER_WORDS = frozenset([
    # work boilerplate
    'work', 'working', 'worked', 'experience', 'experienced', 'years', 'year',
    'help', 'helping', 'helped', 'people', 'person', 'building', 'built', 'build',
    'currently', 'current', 'previously', 'previous',
    # vague descriptors
    'really', 'very', 'quite', 'just', 'things', 'thing', 'stuff',
    'about', 'around', 'through', 'having', 'been', 'being',
    'focused', 'focus', 'focusing', 'looking', 'finding',
    'passionate', 'interested', 'interesting', 'exciting', 'excited',
    'strong', 'deep', 'extensive', 'proven', 'successful', 'effective',
    'significant', 'critical', 'important', 'leading', 'major', 'senior',
    'skilled', 'talented', 'dedicated', 'committed',
    'projects', 'project', 'areas', 'area', 'field', 'fields',
    'especially', 'particularly', 'specific', 'specifically',
    'various', 'different', 'multiple', 'several',
    # buzzwords
    'innovative', 'innovation', 'innovating', 'disruptive', 'disrupting',
    'leverage', 'leveraging', 'optimize', 'optimizing',
    'synergy', 'agile', 'pivot', 'strategic', 'growth', 'impact',
    'value', 'drive', 'driving', 'enable', 'enabling', 'transform', 'transforming',
    'empower', 'empowering', 'revolutionize', 'revolutionizing', 'disrupt',
    # generic verbs
    'create', 'creating', 'created', 'develop', 'developing', 'developed',
    'implement', 'implementing', 'implemented',
    'deliver', 'delivering', 'delivered',
    'achieve', 'achieving', 'achieved', 'improve', 'improving', 'improved',
    'enhance', 'enhancing', 'enhanced', 'support', 'supporting', 'supported',
    'provide', 'providing', 'provided', 'ensure', 'ensuring', 'ensured',
    # org and role words
    'team', 'teams', 'company', 'companies', 'organization', 'organizations',
    'startup', 'startups', 'enterprise', 'role', 'roles', 'position', 'positions',
    'responsible', 'responsibility',
    'outcomes', 'results', 'goals', 'objectives', 'metrics', 'performance', 'success',
    'best', 'premier', 'cutting-edge', 'state-of-the-art',
    'world-class', 'best-in-class', 'industry-leading', 'award-winning',
    'next-generation', 'revolutionary', 'groundbreaking',
    'background', 'degree', 'university', 'college', 'studied', 'graduated',
    'training', 'certification', 'certified', 'qualified',
    'problem', 'problems', 'solving', 'solve', 'solved', 'challenge', 'challenges',
    'issue', 'issues', 'opportunity', 'opportunities',
    'also', 'additionally', 'furthermore', 'moreover',
    'however', 'therefore', 'thus',
    'recently', 'lately', 'always', 'often', 'sometimes', 'usually',
])

_NON_WORD = re.compile(r'[^\w\s-]')


def _is_placeholder(value: str) -> bool:
    lowered = value.lower()
    return any(marker in lowered for marker in PLACEHOLDER_MARKERS)


def is_complete_profile(profile: Profile) -> bool:
    """
    Check whether a profile carries enough identity text to be matched.

    Background must be longer than 20 characters, expertise longer than 15,
    and neither may contain an "incomplete" placeholder.
    """
    background = profile.background or ""
    expertise = profile.expertise or ""

    has_background = len(background) > MIN_BACKGROUND_CHARS and not _is_placeholder(background)
    has_expertise = len(expertise) > MIN_EXPERTISE_CHARS and not _is_placeholder(expertise)
    return has_background and has_expertise


def build_profile_text(profile: Profile) -> Optional[str]:
    """
    Build the labelled identity text used for the profile embedding.

    Returns:
        Text in fixed field order, or None if the profile is not complete
    """
    if not is_complete_profile(profile):
        return None

    return (
        f"Background: {profile.background.strip()}\n"
        f"Expertise: {profile.expertise.strip()}\n"
        f"Interests: {(profile.interests or '').strip()}"
    )


def clean_text(text: str) -> str:
    """
    Strip filler words and short tokens before embedding.

    Tokens containing digits ("web3", "5g") are kept regardless of length.
    """
    if not text:
        return ""

    words = _NON_WORD.sub(' ', text.lower()).split()
    kept = [
        word for word in words
        if (len(word) > 3 and word not in FILLER_WORDS) or any(ch.isdigit() for ch in word)
    ]
    return ' '.join(kept)


def build_embedding_input(profile: Profile) -> Optional[str]:
    """Identity text after cleaning, or None when too little signal remains."""
    text = build_profile_text(profile)
    if text is None:
        return None

    cleaned = clean_text(text)
    if len(cleaned) < MIN_CLEANED_CHARS:
        return None
    return cleaned


def build_contextual_query(query: str, profile: Profile) -> str:
    """Combine a free-text query with the searcher's identity fields."""
    return (
        f"Query: {query.strip()}\n"
        f"Searcher background: {profile.background or ''}\n"
        f"Searcher expertise: {profile.expertise or ''}\n"
        f"Searcher interests: {profile.interests or ''}"
    )
