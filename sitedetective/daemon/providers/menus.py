"""Navigation menu items."""

from typing import List, Sequence

from ..matching import best_match
from ..models import EvidenceItem, MenuItem, ScanPhase, SearchTerm, SourceType
from .base import ScanContext, ScanProvider


class MenuProvider(ScanProvider):
    name = "menus"
    phase = ScanPhase.THEME_FILES
    estimated_cost = 0.2

    def units(self, context: ScanContext) -> Sequence[MenuItem]:
        return context.source.list_menus()

    def scan_units(self, units: Sequence[MenuItem], terms: List[SearchTerm],
                   context: ScanContext) -> List[EvidenceItem]:
        evidence = []
        for item in units:
            term, confidence = best_match(terms, item.title, item.target)
            if term is None:
                continue
            menu = item.menu or "Menu"
            evidence.append(EvidenceItem(
                source_type=SourceType.NAVIGATION_MENU,
                location=f"{menu} > {item.title}",
                matched_text=item.title,
                confidence=confidence,
                context=f"{item.title} -> {item.target}" if item.target else item.title,
                edit_reference=item.edit_ref or "nav-menus.php",
                structural_hint='likely_menu',
                provider=self.name,
            ))
        return evidence
