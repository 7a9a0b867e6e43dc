"""Relevance scoring and de-duplication of evidence.

Provider confidences are not comparable across providers. The only number
that crosses provider boundaries is combined_score = relevance * confidence.
"""

import posixpath
import re
from typing import Dict, Iterable, List

from .matching import best_word_similarity, contains_word
from .models import EvidenceItem, ScoredEvidence, SearchTerm


SUBSTRING_POINTS = 10
WORD_POINTS = 5
SIMILARITY_POINTS = 3
SIMILARITY_FLOOR = 0.6
UI_FILE_POINTS = 5
UI_FILE_MARKERS = ('header', 'footer', 'navigation', 'nav', 'menu')
HINT_POINTS = 3
# Hints from structural providers and client-side selectors
STRUCTURAL_HINTS = frozenset({
    'likely_menu', 'likely_widget', 'likely_content',
    'likely_elementor', 'likely_divi', 'likely_wpbakery', 'likely_gutenberg',
})

BACKUP_SEGMENTS = re.compile(r'/(?:packaged|backups?|staging|old|bak)/')
TIMESTAMPED_EXPORT = re.compile(r'/[^/]+_\d{4}-\d{2}-\d{2}_\d{2}-\d{2}/')
BACKUP_SUFFIX = re.compile(r'(?:\.bak|\.orig|~)$')


def location_key(item: EvidenceItem) -> str:
    """
    Key under which copies of the same source collapse.

    Packaged, backup and staging copies and timestamped theme exports
    all normalize to the live file's key.
    """
    key = item.location.lower().replace('\\', '/')
    key = f"/{key}" if not key.startswith('/') else key
    previous = None
    while previous != key:
        previous = key
        key = BACKUP_SEGMENTS.sub('/', key)
        key = TIMESTAMPED_EXPORT.sub('/', key)
    key = BACKUP_SUFFIX.sub('', key)
    return f"{item.source_type.value}:{key}"


def deduplicate(items: Iterable[EvidenceItem]) -> List[EvidenceItem]:
    """Keep the highest-confidence item per normalized location."""
    best: Dict[str, EvidenceItem] = {}
    for item in items:
        key = location_key(item)
        current = best.get(key)
        if current is None or item.confidence > current.confidence:
            best[key] = item
    return list(best.values())


def relevance(item: EvidenceItem, terms: List[SearchTerm]) -> float:
    searchable = " ".join(
        part for part in (item.location, item.matched_text, item.context, item.edit_reference)
        if part
    ).lower()

    score = 0.0
    for term in terms:
        if term.text in searchable:
            score += SUBSTRING_POINTS
            if contains_word(term.text, searchable):
                score += WORD_POINTS
        similarity = best_word_similarity(term.text, searchable)
        if similarity >= SIMILARITY_FLOOR:
            score += similarity * SIMILARITY_POINTS

    filename = posixpath.basename(item.location.lower().replace('\\', '/'))
    if any(marker in filename for marker in UI_FILE_MARKERS):
        score += UI_FILE_POINTS
    if item.structural_hint in STRUCTURAL_HINTS:
        score += HINT_POINTS
    return score


def score(items: Iterable[EvidenceItem], terms: List[SearchTerm]) -> List[ScoredEvidence]:
    """Score items and sort by combined score, best first."""
    scored = []
    for item in items:
        rel = relevance(item, terms)
        scored.append(ScoredEvidence(item=item, relevance_score=rel,
                                     combined_score=rel * item.confidence))
    # sorted() is stable, so equal scores keep provider order
    return sorted(scored, key=lambda s: s.combined_score, reverse=True)


def rank(items: Iterable[EvidenceItem], terms: List[SearchTerm],
         top_n: int = 20) -> List[ScoredEvidence]:
    return score(deduplicate(items), terms)[:top_n]
