"""Elements the client already matched in the rendered page."""

from typing import List, Sequence

from ..models import EvidenceItem, SearchTerm, SourceType, StructuralHint
from .base import ScanContext, ScanProvider


MIN_HINT_CONFIDENCE = 0.6


def source_hint_for_selector(selector: str) -> str:
    """Guess which kind of source renders an element from its CSS selector."""
    if '.menu' in selector or 'nav' in selector:
        return 'likely_menu'
    if '.widget' in selector or '.sidebar' in selector:
        return 'likely_widget'
    if '.elementor' in selector:
        return 'likely_elementor'
    if '.et_pb' in selector:
        return 'likely_divi'
    return 'unknown'


class StructuralHintProvider(ScanProvider):
    name = "hints"
    estimated_cost = 0.01

    def units(self, context: ScanContext) -> Sequence[StructuralHint]:
        return list(context.hints)

    def scan_units(self, units: Sequence[StructuralHint], terms: List[SearchTerm],
                   context: ScanContext) -> List[EvidenceItem]:
        return [
            EvidenceItem(
                source_type=SourceType.DOM_ELEMENT,
                location=hint.selector,
                matched_text=hint.text,
                confidence=hint.confidence,
                context=f"<{hint.element_type}> {hint.text}".strip(),
                structural_hint=source_hint_for_selector(hint.selector),
                provider=self.name,
            )
            for hint in units
            if hint.confidence > MIN_HINT_CONFIDENCE
        ]
