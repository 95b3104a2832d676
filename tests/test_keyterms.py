"""Tests for key term extraction."""

from chat_memory.memory import (
    ImagePart,
    Message,
    MessageRole,
    STOP_WORDS,
    TextPart,
    extract_key_terms,
    extract_key_terms_from_messages,
)
from chat_memory.memory.keyterms import tokenize


class TestExtractKeyTerms:
    """Tests for extract_key_terms."""

    def test_stopwords_and_short_words_removed(self):
        """Stopwords and words of two letters or fewer never appear."""
        terms = extract_key_terms("the the the cat sat on the mat", 3)

        assert "the" not in terms
        assert "on" not in terms
        assert len(terms) <= 3
        assert terms == ["cat", "sat", "mat"]

    def test_ranked_by_frequency(self):
        """Most frequent terms come first."""
        terms = extract_key_terms("vue python react python react python")

        assert terms == ["python", "react", "vue"]

    def test_ties_keep_first_seen_order(self):
        """Equal counts keep the order the words first appeared in."""
        terms = extract_key_terms("zebra apple mango apple zebra mango")

        assert terms == ["zebra", "apple", "mango"]

    def test_punctuation_stripped(self):
        """Punctuation splits words and is dropped."""
        terms = extract_key_terms("Hello, world! Python's great.")

        assert terms == ["world", "python", "great"]

    def test_max_terms(self):
        """At most max_terms terms are returned."""
        text = "alpha beta gamma delta epsilon zeta"

        assert len(extract_key_terms(text, 2)) == 2
        assert extract_key_terms(text, 0) == []

    def test_empty_input(self):
        """Empty or all-stopword input yields no terms."""
        assert extract_key_terms("") == []
        assert extract_key_terms("the and of to") == []

    def test_case_insensitive(self):
        """Terms are lower-cased before counting."""
        assert extract_key_terms("Docker docker DOCKER") == ["docker"]

    def test_chat_filler_is_stopword(self):
        """Greetings and thanks are treated as stopwords."""
        assert {"hello", "thanks"} <= STOP_WORDS
        assert extract_key_terms("hello thanks kubernetes") == ["kubernetes"]


class TestTokenize:
    """Tests for tokenize."""

    def test_tokenize_keeps_duplicates(self):
        """Tokenize keeps every occurrence in order."""
        assert tokenize("Cache cache miss") == ["cache", "cache", "miss"]


class TestExtractFromMessages:
    """Tests for extract_key_terms_from_messages."""

    def test_uses_text_parts_only(self):
        """Image parts contribute nothing."""
        messages = [
            Message(
                role=MessageRole.USER,
                content=[
                    TextPart("kubernetes cluster"),
                    ImagePart("https://example.com/diagram.png"),
                ],
            ),
            Message(role=MessageRole.ASSISTANT, content="kubernetes deployment"),
        ]

        terms = extract_key_terms_from_messages(messages)

        assert terms == ["kubernetes", "cluster", "deployment"]
        assert "https" not in terms

    def test_default_limit(self):
        """The default limit is fifteen terms."""
        text = " ".join(f"word{i}" for i in range(30))
        messages = [Message(role=MessageRole.USER, content=text)]

        assert len(extract_key_terms_from_messages(messages)) == 15
