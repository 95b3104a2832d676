"""
Key term extraction.

Turns conversational text into a short, frequency-ranked list of
content words used for keyword matching and database pre-filtering.
"""

import re
from collections import Counter
from typing import Iterable, List

from .types import Message


# Common English function words plus chat filler
STOP_WORDS = frozenset({
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for', 'of', 'with',
    'by', 'from', 'up', 'about', 'into', 'through', 'during', 'before', 'after', 'above',
    'below', 'between', 'among', 'is', 'am', 'are', 'was', 'were', 'be', 'been', 'being',
    'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'could', 'should', 'may',
    'might', 'must', 'can', 'this', 'that', 'these', 'those', 'i', 'you', 'he', 'she',
    'it', 'we', 'they', 'what', 'which', 'who', 'when', 'where', 'why', 'how', 'all',
    'each', 'every', 'both', 'few', 'more', 'most', 'other', 'some', 'such', 'no', 'nor',
    'not', 'only', 'own', 'same', 'so', 'than', 'too', 'very', 'just', 'now', 'also',
    'here', 'there', 'then', 'again', 'further', 'once', 'please', 'thank', 'thanks',
    'hello', 'hi', 'hey', 'bye', 'goodbye', 'yes', 'ok', 'okay', 'well', 'like',
    'know', 'think', 'want', 'need', 'get', 'go', 'come', 'see', 'look', 'take', 'give',
    'make', 'tell', 'ask', 'work', 'seem', 'feel', 'try', 'leave', 'call', 'show',
})

MIN_TERM_LENGTH = 3

_PUNCTUATION = re.compile(r"[^\w\s]")


def tokenize(text: str) -> List[str]:
    """Lower-case text, strip punctuation and drop short words and stopwords."""
    words = _PUNCTUATION.sub(" ", text.lower()).split()
    return [
        word for word in words
        if len(word) >= MIN_TERM_LENGTH and word not in STOP_WORDS
    ]


def extract_key_terms(text: str, max_terms: int = 10) -> List[str]:
    """
    Extract the most frequent content words from text.

    Args:
        text: Text to analyze
        max_terms: Maximum number of terms to return

    Returns:
        Terms ordered by descending frequency; ties keep first-seen order.
    """
    if not text or max_terms <= 0:
        return []

    counts = Counter(tokenize(text))
    # Counter preserves first-seen order and sorted() is stable
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [term for term, _ in ranked[:max_terms]]


def extract_key_terms_from_messages(
    messages: Iterable[Message],
    max_terms: int = 15,
) -> List[str]:
    """Extract key terms from the text parts of a conversation."""
    all_text = " ".join(message.text for message in messages)
    return extract_key_terms(all_text, max_terms)
