"""Frequency-based keyword extraction for cluster members."""

import re
from collections import Counter
from typing import Iterable, List

MIN_KEYWORD_LENGTH = 5

STOP_WORDS = frozenset([
    'work', 'working', 'experience', 'years', 'help', 'people', 'building',
    'really', 'think', 'things', 'about', 'through', 'around', 'having',
    'currently', 'reality', 'looking', 'focused', 'focus',
    'passionate', 'interested', 'projects', 'areas', 'field',
    'especially', 'particularly', 'specific', 'various', 'different',
    # common English words long enough to survive the length filter
    'their', 'there', 'these', 'those', 'which', 'where', 'while', 'other',
    'would', 'could', 'should', 'being', 'after', 'before', 'using',
    'background', 'expertise', 'interests',
])

_NON_ALPHA = re.compile(r'[^a-z\s]')


def tokenize(text: str) -> List[str]:
    """Lowercase, replace non-letters with spaces, keep non-stop-words of 5+ letters."""
    cleaned = _NON_ALPHA.sub(' ', (text or '').lower())
    return [
        word for word in cleaned.split()
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS
    ]


def extract_keywords(texts: Iterable[str], top_n: int = 5) -> List[str]:
    """
    Most frequent keywords across texts.

    Ties keep the order in which words were first seen.
    """
    counts = Counter()
    for text in texts:
        counts.update(tokenize(text))
    return [word for word, _ in counts.most_common(top_n)]
