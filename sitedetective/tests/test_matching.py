"""Tests for the text matching primitives."""

from sitedetective.daemon.matching import (
    LineMatch,
    best_match,
    extract_context,
    find_line_matches,
    match_confidence,
)
from sitedetective.daemon.models import SearchTerm


class TestMatchConfidence:

    def test_whole_word(self):
        assert match_confidence("contact", "Contact us") == 0.9

    def test_substring(self):
        assert match_confidence("act", "contact") == 0.75

    def test_fuzzy_capped(self):
        """A near miss never scores above a real substring hit."""
        assert match_confidence("contact", "contract") == 0.6

    def test_empty(self):
        assert match_confidence("", "anything") == 0.0
        assert match_confidence("contact", "") == 0.0


class TestBestMatch:

    def test_picks_present_term(self):
        terms = [SearchTerm("button"), SearchTerm("contact")]
        term, confidence = best_match(terms, "Contact page", "/contact")
        assert term.text == "contact"
        assert confidence == 0.9

    def test_no_substring_no_match(self):
        term, confidence = best_match([SearchTerm("pricing")], "Contact", "/contact")
        assert term is None
        assert confidence == 0.0


class TestContext:

    def test_extract_context_radius(self):
        assert extract_context("aaaa contact bbbb", "contact", radius=2) == "...a contact b..."

    def test_extract_context_missing(self):
        assert extract_context("nothing here", "contact") == ""

    def test_find_line_matches(self):
        matches = find_line_matches("one\ntwo Contact\nthree", "contact", radius=1)
        assert matches == [LineMatch(line=2, content="two Contact",
                                     context="1: one\n2: two Contact\n3: three")]
