"""Shortcodes embedded in the current page's body."""

import re
from typing import List, Sequence

from ..matching import best_match
from ..models import EvidenceItem, SearchTerm, SourceType
from .base import ScanContext, ScanProvider


SHORTCODE_RE = re.compile(r'\[([^\[\]/][^\[\]]*)\]')


class ShortcodeProvider(ScanProvider):
    name = "shortcodes"
    estimated_cost = 0.2

    def units(self, context: ScanContext) -> Sequence[str]:
        if context.page.page_id is None:
            return []
        record = context.source.get_record(context.page.page_id)
        if record is None:
            return []
        return SHORTCODE_RE.findall(record.body)

    def scan_units(self, units: Sequence[str], terms: List[SearchTerm],
                   context: ScanContext) -> List[EvidenceItem]:
        evidence = []
        seen = set()
        page_id = context.page.page_id
        for shortcode in units:
            if shortcode in seen:
                continue
            seen.add(shortcode)
            term, confidence = best_match(terms, shortcode)
            if term is None:
                continue
            tag = shortcode.split()[0]
            evidence.append(EvidenceItem(
                source_type=SourceType.SHORTCODE,
                location=f"page {page_id} [{tag}]",
                matched_text=f"[{shortcode}]",
                confidence=confidence,
                context=f"[{shortcode}]",
                edit_reference=f"post.php?post={page_id}&action=edit",
                structural_hint='likely_shortcode',
                provider=self.name,
            ))
        return evidence
