"""Text matching primitives shared by providers and the scorer."""

import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from functools import lru_cache
from typing import Iterable, List, Optional, Tuple

from .models import SearchTerm


WORD_BOUNDARY_CONFIDENCE = 0.9
SUBSTRING_CONFIDENCE = 0.75
FUZZY_CEILING = 0.6


@dataclass(frozen=True)
class LineMatch:
    line: int
    content: str
    context: str


@lru_cache(maxsize=1024)
def _word_pattern(term: str) -> "re.Pattern":
    return re.compile(r'\b' + re.escape(term) + r'\b')


def similarity(a: str, b: str) -> float:
    """Character similarity ratio in [0, 1]."""
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def contains_word(term: str, text: str) -> bool:
    return _word_pattern(term.lower()).search(text.lower()) is not None


def match_confidence(term: str, text: str) -> float:
    """
    Confidence that `text` refers to `term`.

    0.9 for a whole-word hit, 0.75 for a substring hit, otherwise the
    fuzzy similarity capped at 0.6 so a fuzzy match never outranks a real one.
    """
    term = term.lower().strip()
    text = (text or "").lower()
    if not term or not text:
        return 0.0

    if term in text:
        if _word_pattern(term).search(text):
            return WORD_BOUNDARY_CONFIDENCE
        return SUBSTRING_CONFIDENCE

    return round(min(FUZZY_CEILING, similarity(term, text)), 2)


def best_match(terms: Iterable[SearchTerm], *texts: str,
               require_substring: bool = True) -> Tuple[Optional[SearchTerm], float]:
    """
    Best (term, confidence) across terms and candidate texts.

    With require_substring, only terms literally present in some text count,
    which is how providers decide a thing matched at all.
    """
    best_term: Optional[SearchTerm] = None
    best_conf = 0.0
    lowered = [(t or "").lower() for t in texts]
    for term in terms:
        for text in lowered:
            if require_substring and term.text not in text:
                continue
            conf = match_confidence(term.text, text)
            if conf > best_conf:
                best_term, best_conf = term, conf
    return best_term, best_conf


def best_word_similarity(term: str, text: str) -> float:
    """Highest similarity between term and any whitespace-separated word."""
    return max((similarity(term, word) for word in text.split()), default=0.0)


def extract_context(content: str, term: str, radius: int = 100) -> str:
    """Snippet of `radius` characters either side of the first hit."""
    pos = content.lower().find(term.lower())
    if pos < 0:
        return ""
    start = max(0, pos - radius)
    end = pos + len(term) + radius
    return "..." + content[start:end] + "..."


def surrounding_lines(lines: List[str], index: int, radius: int = 2) -> str:
    start = max(0, index - radius)
    end = min(len(lines) - 1, index + radius)
    return "\n".join(f"{i + 1}: {lines[i].strip()}" for i in range(start, end + 1))


def find_line_matches(content: str, term: str, radius: int = 2) -> List[LineMatch]:
    """Every line containing term, 1-based, with numbered surrounding lines."""
    needle = term.lower()
    lines = content.split("\n")
    return [
        LineMatch(line=i + 1, content=line.strip(), context=surrounding_lines(lines, i, radius))
        for i, line in enumerate(lines)
        if needle in line.lower()
    ]
