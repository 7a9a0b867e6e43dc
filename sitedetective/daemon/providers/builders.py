"""Page-builder elements on the current page."""

from typing import List, Sequence

from ..matching import best_match
from ..models import BuilderElement, EvidenceItem, ScanPhase, SearchTerm, SourceType
from .base import ScanContext, ScanProvider


BUILDER_HINTS = {
    'elementor': 'likely_elementor',
    'divi': 'likely_divi',
    'wpbakery': 'likely_wpbakery',
    'gutenberg': 'likely_gutenberg',
}


class BuilderProvider(ScanProvider):
    name = "builders"
    phase = ScanPhase.BUILDERS
    estimated_cost = 0.5

    def units(self, context: ScanContext) -> Sequence[BuilderElement]:
        if context.builders is None:
            return []
        return context.builders.detect(context.page)

    def scan_units(self, units: Sequence[BuilderElement], terms: List[SearchTerm],
                   context: ScanContext) -> List[EvidenceItem]:
        evidence = []
        for element in units:
            term, confidence = best_match(terms, element.text, element.type, element.link)
            if term is None:
                continue
            label = " ".join(element.text.split())[:60]
            evidence.append(EvidenceItem(
                source_type=SourceType.PAGE_BUILDER,
                location=f"{element.builder}/{element.type}: {label}",
                matched_text=element.text,
                confidence=confidence,
                context=f"{element.text} -> {element.link}" if element.link else element.text,
                edit_reference=element.edit_ref,
                structural_hint=BUILDER_HINTS.get(element.builder, 'unknown'),
                provider=self.name,
            ))
        return evidence
