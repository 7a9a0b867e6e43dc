"""Turn a free-text question into search terms."""

import re
from typing import List

from .models import SearchTerm


STOP_WORDS = frozenset([
    'the', 'is', 'at', 'which', 'on', 'and', 'a', 'to', 'are', 'as', 'was', 'were',
    'what', 'where', 'how', 'why', 'when', 'who', 'that', 'this', 'these',
    'those', 'i', 'me', 'my', 'we', 'our', 'you', 'your', 'he', 'she', 'it', 'they',
    'them', 'their', 'be', 'been', 'being', 'have', 'has', 'had', 'do', 'does', 'did',
    'will', 'would', 'could', 'should', 'may', 'might', 'must', 'can', 'cant', 'cannot',
    'coming', 'from', 'of', 'in', 'for', 'with', 'by', 'about', 'into', 'through',
    'during', 'before', 'after', 'above', 'below', 'up', 'down', 'out', 'off', 'over',
    'under', 'again', 'further', 'then', 'once',
])

TOKEN_SPLIT = re.compile(r'[\s\-_.,;:!?()\[\]{}"\'+]+')

UI_PHRASES = re.compile(
    r'\b(?:about\s+us'
    r'|contact\s+(?:us|form|button|page)'
    r'|home\s+(?:page|button|link)'
    r'|menu\s+(?:item|link|button)'
    r'|navigation\s+(?:menu|bar|item)'
    r'|header\s+(?:menu|nav|navigation)'
    r'|footer\s+(?:menu|nav|navigation|link)'
    r'|sidebar\s+(?:widget|menu)'
    r'|search\s+(?:form|box|widget|button)'
    r'|login\s+(?:form|button|link)'
    r'|sign\s+(?:in|up)'
    r'|log\s+(?:in|out)'
    r'|call\s+to\s+action'
    r'|read\s+more|learn\s+more|get\s+started|shop\s+now|buy\s+now'
    r'|add\s+to\s+cart'
    r'|view\s+(?:more|all)'
    r'|see\s+(?:more|all))\b'
)

MIN_TOKEN_LENGTH = 3


def extract_terms(query: str) -> List[SearchTerm]:
    """
    Extract search terms from a question.

    Phrases from the UI vocabulary come first, in order of appearance,
    followed by single words with stop words and short tokens removed.
    Duplicates are dropped; the output is deterministic for a given query.
    """
    text = query.lower().strip()
    terms: List[SearchTerm] = []
    seen = set()

    for match in UI_PHRASES.finditer(text):
        phrase = " ".join(match.group(0).split())
        if phrase not in seen:
            seen.add(phrase)
            terms.append(SearchTerm(phrase, is_phrase=True))

    for token in TOKEN_SPLIT.split(text):
        if len(token) < MIN_TOKEN_LENGTH or token in STOP_WORDS or token in seen:
            continue
        seen.add(token)
        terms.append(SearchTerm(token))

    return terms
