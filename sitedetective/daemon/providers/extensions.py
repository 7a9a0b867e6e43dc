"""Installed extensions (plugins), by name and file contents."""

from typing import List, Optional, Sequence
from urllib.parse import quote

from ..matching import best_match, find_line_matches, match_confidence
from ..models import EvidenceItem, ExtensionRef, ScanPhase, SearchTerm, SourceType
from .base import ScanContext, ScanProvider


class ExtensionProvider(ScanProvider):
    name = "extensions"
    phase = ScanPhase.EXTENSIONS
    estimated_cost = 2.0

    def units(self, context: ScanContext) -> Sequence[ExtensionRef]:
        return context.source.list_active_extensions()

    def scan_units(self, units: Sequence[ExtensionRef], terms: List[SearchTerm],
                   context: ScanContext) -> List[EvidenceItem]:
        evidence = []
        for extension in units:
            item = self._scan_extension(extension, terms)
            if item is not None:
                evidence.append(item)
        return evidence

    def _scan_extension(self, extension: ExtensionRef,
                        terms: List[SearchTerm]) -> Optional[EvidenceItem]:
        settings_ref = extension.edit_ref or f"plugins.php?plugin={quote(extension.name)}"
        best: Optional[EvidenceItem] = None

        term, confidence = best_match(terms, extension.name)
        if term is not None:
            best = EvidenceItem(
                source_type=SourceType.EXTENSION,
                location=extension.name,
                matched_text=extension.name,
                confidence=confidence,
                context=f"{extension.name} {extension.version}".strip(),
                edit_reference=settings_ref,
                structural_hint='likely_extension',
                provider=self.name,
            )

        for file in extension.files:
            lowered = file.content.lower()
            for term in terms:
                if term.text not in lowered:
                    continue
                confidence = match_confidence(term.text, file.content)
                if best is not None and confidence <= best.confidence:
                    continue
                lines = find_line_matches(file.content, term.text)
                first = lines[0] if lines else None
                best = EvidenceItem(
                    source_type=SourceType.EXTENSION,
                    location=file.path,
                    matched_text=first.content if first else term.text,
                    confidence=confidence,
                    context=first.context if first else "",
                    edit_reference=file.edit_ref or f"plugin-editor.php?file={quote(file.path)}",
                    structural_hint='likely_extension',
                    line=first.line if first else None,
                    provider=self.name,
                )
        return best
