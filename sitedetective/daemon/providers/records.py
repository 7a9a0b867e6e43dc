"""Stored content records: bodies, titles and meta values."""

from typing import Any, List, Sequence

from loguru import logger

from ..matching import best_match, extract_context
from ..models import EvidenceItem, ScanPhase, SearchTerm, SourceType
from .base import ScanContext, ScanProvider


class RecordProvider(ScanProvider):
    name = "database"
    phase = ScanPhase.DATABASE
    estimated_cost = 2.0

    def units(self, context: ScanContext) -> Sequence[Any]:
        return context.source.list_record_ids()

    def scan_units(self, units: Sequence[Any], terms: List[SearchTerm],
                   context: ScanContext) -> List[EvidenceItem]:
        evidence = []
        for record_id in units:
            record = context.source.get_record(record_id)
            if record is None:
                logger.debug(f"Record {record_id} disappeared during scan")
                continue

            fields = [('title', record.title), ('body', record.body)]
            fields.extend(
                (f"meta:{key}", value) for key, value in record.meta.items()
                if isinstance(value, str)
            )

            best = None
            for field_name, value in fields:
                term, confidence = best_match(terms, value)
                if term is None or (best is not None and confidence <= best.confidence):
                    continue
                best = EvidenceItem(
                    source_type=SourceType.CONTENT_RECORD,
                    location=f"records/{record.id}/{field_name}",
                    matched_text=record.title or str(record.id),
                    confidence=confidence,
                    context=extract_context(value, term.text),
                    edit_reference=f"post.php?post={record.id}&action=edit",
                    structural_hint='likely_content',
                    provider=self.name,
                )
            if best is not None:
                evidence.append(best)
        return evidence
