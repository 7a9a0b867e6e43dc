"""Export deep-scan results to CSV or JSON files."""

import csv
import io
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

import aiofiles
from loguru import logger

from . import scoring
from .models import ScanJob, ScoredEvidence
from .terms import extract_terms


FORMATS = ("csv", "json")
CSV_COLUMNS = [
    "Type", "Location", "Line", "Content", "Context",
    "Confidence", "Relevance", "Edit Reference",
]


def safe_query(query: str, limit: int = 40) -> str:
    slug = re.sub(r'[^A-Za-z0-9]+', '-', query).strip('-').lower()
    return slug[:limit] or "query"


def export_filename(query: str, fmt: str, when: datetime) -> str:
    stamp = when.strftime("%Y-%m-%d_%H-%M-%S")
    return f"detective-deep-results_{safe_query(query)}_{stamp}.{fmt}"


def export_rows(job: ScanJob) -> List[ScoredEvidence]:
    """Ranked results when the job finished, otherwise everything scored so far."""
    if job.ranked:
        return list(job.ranked)
    return scoring.score(scoring.deduplicate(job.results), extract_terms(job.query))


def _flat(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r'\s*[\r\n]+\s*', ' ', str(value)).strip()


def render_csv(job: ScanJob, rows: List[ScoredEvidence], generated: datetime) -> str:
    buffer = io.StringIO()
    buffer.write("# Site Detective deep scan results\n")
    buffer.write(f"# Scan type: deep ({job.status.value})\n")
    buffer.write(f"# Query: {_flat(job.query)}\n")
    buffer.write(f"# Generated: {generated.isoformat(timespec='seconds')}\n")
    buffer.write(f"# Total results: {len(rows)}\n")

    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for scored in rows:
        item = scored.item
        writer.writerow([
            item.source_type.value,
            _flat(item.location),
            "" if item.line is None else item.line,
            _flat(item.matched_text),
            _flat(item.context),
            f"{item.confidence:.2f}",
            f"{scored.relevance_score:.2f}",
            _flat(item.edit_reference),
        ])
    return buffer.getvalue()


def render_json(job: ScanJob, rows: List[ScoredEvidence], generated: datetime) -> str:
    document: Dict[str, Any] = {
        'meta': {
            'scan_type': 'deep',
            'job_id': job.id,
            'query': job.query,
            'page': job.page.to_dict(),
            'status': job.status.value,
            'generated': generated.isoformat(timespec='seconds'),
            'total': len(rows),
        },
        'results': [s.to_dict() for s in rows],
        'attribution': job.attribution.to_dict() if job.attribution else None,
    }
    if job.branding_report is not None:
        document['branding'] = job.branding_report
    return json.dumps(document, indent=2, ensure_ascii=False)


async def export_job(job: ScanJob, fmt: str, directory: Path,
                     now: datetime = None) -> Path:
    """Write a job's results to directory and return the file path."""
    fmt = fmt.lower()
    if fmt not in FORMATS:
        raise ValueError(f"Unsupported export format: {fmt}")

    generated = now or datetime.now()
    rows = export_rows(job)
    content = render_csv(job, rows, generated) if fmt == "csv" else render_json(job, rows, generated)

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(job.query, fmt, generated)
    async with aiofiles.open(path, 'w', encoding='utf-8', newline='') as f:
        await f.write(content)

    logger.info(f"Exported {len(rows)} results for {job.id} to {path}")
    return path
