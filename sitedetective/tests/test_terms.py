"""Tests for query term extraction."""

from sitedetective.daemon.terms import extract_terms


def texts(terms):
    return [(t.text, t.is_phrase) for t in terms]


class TestExtractTerms:
    """Phrases first, then words, stop words and short tokens dropped."""

    def test_phrase_then_words(self):
        terms = extract_terms("Where is the contact button coming from?")
        assert texts(terms) == [
            ("contact button", True),
            ("contact", False),
            ("button", False),
        ]

    def test_short_tokens_and_stop_words_dropped(self):
        terms = extract_terms("How do I log in?")
        assert texts(terms) == [("log in", True), ("log", False)]

    def test_duplicates_removed(self):
        assert texts(extract_terms("menu Menu MENU")) == [("menu", False)]

    def test_phrase_whitespace_normalized(self):
        terms = extract_terms("the read   more link")
        assert terms[0].text == "read more"
        assert terms[0].is_phrase

    def test_empty_query(self):
        assert extract_terms("") == []
        assert extract_terms("   ?!") == []

    def test_deterministic(self):
        query = "Why is the footer menu link red?"
        assert extract_terms(query) == extract_terms(query)
