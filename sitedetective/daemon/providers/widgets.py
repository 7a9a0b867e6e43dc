"""Sidebar and footer widgets."""

from typing import List, Sequence

from ..matching import best_match, extract_context
from ..models import EvidenceItem, SearchTerm, SourceType, WidgetRef
from .base import ScanContext, ScanProvider


class WidgetProvider(ScanProvider):
    name = "widgets"
    estimated_cost = 0.3

    def units(self, context: ScanContext) -> Sequence[WidgetRef]:
        return context.source.list_widgets()

    def scan_units(self, units: Sequence[WidgetRef], terms: List[SearchTerm],
                   context: ScanContext) -> List[EvidenceItem]:
        evidence = []
        for widget in units:
            term, confidence = best_match(terms, widget.title, widget.serialized_content)
            if term is None:
                continue
            area = widget.area or "widgets"
            evidence.append(EvidenceItem(
                source_type=SourceType.WIDGET,
                location=f"{area}/{widget.type}",
                matched_text=widget.title or widget.type,
                confidence=confidence,
                context=extract_context(widget.serialized_content, term.text) or widget.title,
                edit_reference=widget.edit_ref or "widgets.php",
                structural_hint='likely_widget',
                provider=self.name,
            ))
        return evidence
