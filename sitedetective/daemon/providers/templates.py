"""Theme template files."""

import hashlib
import posixpath
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

from loguru import logger

from ..matching import find_line_matches, match_confidence
from ..models import EvidenceItem, FileRef, ScanPhase, SearchTerm, SourceType
from .base import ScanContext, ScanProvider


PRIORITY_TEMPLATES = ('header.php', 'footer.php', 'index.php', 'functions.php')


def is_priority_template(path: str) -> bool:
    normalized = path.replace('\\', '/')
    return (posixpath.basename(normalized) in PRIORITY_TEMPLATES
            or '/partials/' in f"/{normalized}")


def analysis_cache_key(file: FileRef) -> str:
    """Per-file key; a new modified_at gives a new key."""
    digest = hashlib.md5(f"{file.path}{file.modified_at}".encode()).hexdigest()
    return f"file_analysis:{digest}"


class TemplateProvider(ScanProvider):
    """
    Template files containing a search term.

    Quick scans look only at the files most likely to render shared UI.
    Deep scans walk every file and cache per-file analysis.
    """

    name = "templates"
    phase = ScanPhase.THEME_FILES
    estimated_cost = 1.0
    source_type = SourceType.TEMPLATE_FILE
    structural_hint = 'likely_template'

    def units(self, context: ScanContext) -> Sequence[FileRef]:
        files = self._list_files(context)
        if context.quick:
            return [f for f in files if is_priority_template(f.path)]
        return files

    def _list_files(self, context: ScanContext) -> List[FileRef]:
        if context.quick or context.cache is None:
            return context.source.list_template_files(context.page)

        # Deep batches slice this list by position, so it must not change mid-scan
        key = f"{self.name}_files:" + hashlib.md5(context.page.url.encode()).hexdigest()
        cached, found = context.cache.get(key)
        if found:
            return [FileRef(**f) for f in cached]
        files = context.source.list_template_files(context.page)
        context.cache.set(key, [asdict(f) for f in files], context.file_list_ttl)
        return files

    def edit_reference(self, file: FileRef) -> str:
        if file.edit_ref:
            return file.edit_ref
        return f"theme-editor.php?file={quote(posixpath.basename(file.path))}"

    def scan_units(self, units: Sequence[FileRef], terms: List[SearchTerm],
                   context: ScanContext) -> List[EvidenceItem]:
        evidence = []
        for file in units:
            item = self.scan_file(file, terms, context)
            if item is not None:
                evidence.append(item)
        return evidence

    def scan_file(self, file: FileRef, terms: List[SearchTerm],
                  context: ScanContext) -> Optional[EvidenceItem]:
        if context.quick or context.cache is None:
            per_term = self.analyze(file, terms)
        else:
            per_term = self._cached_analysis(file, terms, context)

        best: Optional[EvidenceItem] = None
        for term in terms:
            data = per_term.get(term.text)
            if data is None:
                continue
            item = EvidenceItem.from_dict(data)
            if best is None or item.confidence > best.confidence:
                best = item
        return best

    def _cached_analysis(self, file: FileRef, terms: List[SearchTerm],
                         context: ScanContext) -> Dict[str, Any]:
        key = analysis_cache_key(file)
        cached, found = context.cache.get(key)
        cached = cached if found else {}
        missing = [t for t in terms if t.text not in cached.get('scanned', [])]
        if missing:
            cached.setdefault('scanned', [])
            cached.setdefault('matches', {})
            cached['matches'].update(self.analyze(file, missing))
            cached['scanned'].extend(t.text for t in missing)
            context.cache.set(key, cached)
            logger.debug(f"Analyzed {file.path} for {len(missing)} terms")
        return cached['matches']

    def analyze(self, file: FileRef, terms: List[SearchTerm]) -> Dict[str, Dict[str, Any]]:
        """Evidence dicts keyed by term, for terms found in the file."""
        results = {}
        lowered = file.content.lower()
        for term in terms:
            if term.text not in lowered:
                continue
            lines = find_line_matches(file.content, term.text)
            first = lines[0] if lines else None
            results[term.text] = EvidenceItem(
                source_type=self.source_type,
                location=file.path,
                matched_text=first.content if first else term.text,
                confidence=match_confidence(term.text, file.content),
                context=first.context if first else "",
                edit_reference=self.edit_reference(file),
                structural_hint=self.structural_hint,
                line=first.line if first else None,
                provider=self.name,
            ).to_dict()
        return results
