"""Data models for the site detective daemon."""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Dict, Any, Optional, Tuple


class SourceType(Enum):
    """Kinds of sources that can control a visible element."""
    DOM_ELEMENT = "dom_element"
    NAVIGATION_MENU = "navigation_menu"
    TEMPLATE_FILE = "template_file"
    WIDGET = "widget"
    SHORTCODE = "shortcode"
    PAGE_BUILDER = "page_builder"
    CONTENT_RECORD = "content_record"
    EXTENSION = "extension"
    STYLESHEET = "stylesheet"


class JobStatus(Enum):
    """Deep scan job states."""
    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.ERROR)

    @property
    def is_runnable(self) -> bool:
        return self in (JobStatus.INITIATED, JobStatus.IN_PROGRESS)


class ScanPhase(Enum):
    """Deep scan phases, in execution order."""
    THEME_FILES = "theme_files"
    EXTENSIONS = "extensions"
    DATABASE = "database"
    BUILDERS = "builders"
    BRANDING_AUDIT = "branding_audit"
    SYNTHESIS = "synthesis"

    def next(self) -> Optional["ScanPhase"]:
        phases = list(ScanPhase)
        index = phases.index(self)
        return phases[index + 1] if index + 1 < len(phases) else None


class LoadLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ControlAction(Enum):
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


@dataclass(frozen=True)
class PageContext:
    """The page the user is looking at when asking."""
    url: str = ""
    page_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'url': self.url, 'page_id': self.page_id}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PageContext":
        data = data or {}
        return cls(url=data.get('url') or "", page_id=data.get('page_id'))


@dataclass(frozen=True)
class StructuralHint:
    """An element the client already matched in the rendered page."""
    selector: str
    text: str = ""
    confidence: float = 0.0
    element_type: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StructuralHint":
        return cls(
            selector=data.get('selector', ''),
            text=data.get('text', '') or '',
            confidence=float(data.get('confidence', 0.0) or 0.0),
            element_type=data.get('element_type') or data.get('type') or 'unknown',
        )


@dataclass(frozen=True)
class Query:
    """A submitted question. Immutable once created."""
    text: str
    page: PageContext = field(default_factory=PageContext)
    hints: Tuple[StructuralHint, ...] = ()


@dataclass(frozen=True)
class SearchTerm:
    """A normalized token or phrase extracted from a query."""
    text: str
    is_phrase: bool = False


@dataclass(frozen=True)
class EvidenceItem:
    """One located, confidence-scored hint that a source controls the element."""
    source_type: SourceType
    location: str
    matched_text: str
    confidence: float
    context: str = ""
    edit_reference: str = ""
    structural_hint: Optional[str] = None
    line: Optional[int] = None
    provider: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_type': self.source_type.value,
            'location': self.location,
            'matched_text': self.matched_text,
            'confidence': self.confidence,
            'context': self.context,
            'edit_reference': self.edit_reference,
            'structural_hint': self.structural_hint,
            'line': self.line,
            'provider': self.provider
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvidenceItem":
        return cls(
            source_type=SourceType(data['source_type']),
            location=data['location'],
            matched_text=data.get('matched_text', ''),
            confidence=float(data.get('confidence', 0.0)),
            context=data.get('context', ''),
            edit_reference=data.get('edit_reference', ''),
            structural_hint=data.get('structural_hint'),
            line=data.get('line'),
            provider=data.get('provider', '')
        )


@dataclass(frozen=True)
class ScoredEvidence:
    """An evidence item with its derived ranking scores."""
    item: EvidenceItem
    relevance_score: float
    combined_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.item.to_dict(),
            'relevance_score': round(self.relevance_score, 3),
            'combined_score': round(self.combined_score, 3)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoredEvidence":
        return cls(
            item=EvidenceItem.from_dict(data),
            relevance_score=float(data.get('relevance_score', 0.0)),
            combined_score=float(data.get('combined_score', 0.0))
        )


@dataclass(frozen=True)
class LoadSnapshot:
    """Point-in-time load reading. Never stored."""
    memory_used: float
    memory_limit: float
    elapsed_time: float
    active_jobs: int

    @property
    def memory_fraction(self) -> float:
        if self.memory_limit <= 0:
            return 0.0
        return self.memory_used / self.memory_limit


@dataclass(frozen=True)
class ThrottleSettings:
    batch_size: int
    inter_batch_delay: float
    max_concurrent: int


@dataclass
class Attribution:
    """Final explanation of which source controls the element."""
    primary_source: Optional[ScoredEvidence]
    label: str
    location: str
    edit_reference: str
    narrative: str = ""
    used_fallback: bool = False
    digest: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'primary_source': self.primary_source.to_dict() if self.primary_source else None,
            'label': self.label,
            'location': self.location,
            'edit_reference': self.edit_reference,
            'narrative': self.narrative,
            'used_fallback': self.used_fallback,
            'digest': self.digest
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attribution":
        primary = data.get('primary_source')
        return cls(
            primary_source=ScoredEvidence.from_dict(primary) if primary else None,
            label=data.get('label', ''),
            location=data.get('location', ''),
            edit_reference=data.get('edit_reference', ''),
            narrative=data.get('narrative', ''),
            used_fallback=data.get('used_fallback', False),
            digest=data.get('digest', {})
        )


@dataclass
class QuickResult:
    """Result of a bounded-time quick scan."""
    query: str
    terms: List[SearchTerm]
    primary_source: Optional[ScoredEvidence]
    scored_evidence: List[ScoredEvidence]
    confidence: float
    elapsed_ms: float
    timed_out: bool = False
    skipped_providers: List[str] = field(default_factory=list)
    provider_errors: Dict[str, str] = field(default_factory=dict)
    analysis: Optional[Attribution] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'scan_type': 'quick',
            'query': self.query,
            'terms': [t.text for t in self.terms],
            'primary_source': self.primary_source.to_dict() if self.primary_source else None,
            'results': [s.to_dict() for s in self.scored_evidence],
            'confidence': self.confidence,
            'elapsed_ms': round(self.elapsed_ms, 1),
            'timed_out': self.timed_out,
            'skipped_providers': self.skipped_providers,
            'provider_errors': self.provider_errors,
            'analysis': self.analysis.to_dict() if self.analysis else None,
            'deep_scan_available': True
        }


@dataclass
class ScanJob:
    """Persisted state of a deep scan."""
    id: str
    query: str
    page: PageContext
    hints: List[StructuralHint] = field(default_factory=list)
    status: JobStatus = JobStatus.INITIATED
    current_phase: ScanPhase = ScanPhase.THEME_FILES
    current_task: str = "Initializing deep scan..."
    progress_percent: float = 0.0
    batch_position: int = 0
    results: List[EvidenceItem] = field(default_factory=list)
    ranked: List[ScoredEvidence] = field(default_factory=list)
    attribution: Optional[Attribution] = None
    branding_report: Optional[Dict[str, Any]] = None
    started_at: float = 0.0
    last_update: float = 0.0
    paused_at: Optional[float] = None
    cancelled_at: Optional[float] = None
    completed_at: Optional[float] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'query': self.query,
            'page': self.page.to_dict(),
            'hints': [h.to_dict() for h in self.hints],
            'status': self.status.value,
            'current_phase': self.current_phase.value,
            'current_task': self.current_task,
            'progress_percent': self.progress_percent,
            'batch_position': self.batch_position,
            'results': [r.to_dict() for r in self.results],
            'ranked': [r.to_dict() for r in self.ranked],
            'attribution': self.attribution.to_dict() if self.attribution else None,
            'branding_report': self.branding_report,
            'started_at': self.started_at,
            'last_update': self.last_update,
            'paused_at': self.paused_at,
            'cancelled_at': self.cancelled_at,
            'completed_at': self.completed_at,
            'error_message': self.error_message
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanJob":
        attribution = data.get('attribution')
        return cls(
            id=data['id'],
            query=data['query'],
            page=PageContext.from_dict(data.get('page')),
            hints=[StructuralHint.from_dict(h) for h in data.get('hints', [])],
            status=JobStatus(data['status']),
            current_phase=ScanPhase(data['current_phase']),
            current_task=data.get('current_task', ''),
            progress_percent=data.get('progress_percent', 0.0),
            batch_position=data.get('batch_position', 0),
            results=[EvidenceItem.from_dict(r) for r in data.get('results', [])],
            ranked=[ScoredEvidence.from_dict(r) for r in data.get('ranked', [])],
            attribution=Attribution.from_dict(attribution) if attribution else None,
            branding_report=data.get('branding_report'),
            started_at=data.get('started_at', 0.0),
            last_update=data.get('last_update', 0.0),
            paused_at=data.get('paused_at'),
            cancelled_at=data.get('cancelled_at'),
            completed_at=data.get('completed_at'),
            error_message=data.get('error_message')
        )


@dataclass(frozen=True)
class DeepScanTicket:
    """Returned immediately when a deep scan is requested."""
    job_id: Optional[str]
    status: str
    estimated_duration: str = "5-10 minutes"
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'scan_type': 'deep',
            'job_id': self.job_id,
            'status': self.status,
            'estimated_duration': self.estimated_duration,
            'message': self.message
        }


@dataclass(frozen=True)
class JobProgress:
    """Read-only snapshot of a deep scan's persisted state."""
    job_id: str
    status: JobStatus
    progress_percent: float
    current_phase: ScanPhase
    current_task: str
    partial_results: List[EvidenceItem]
    elapsed_seconds: float
    last_update: float
    error_message: Optional[str] = None
    attribution: Optional[Attribution] = None
    ranked: List[ScoredEvidence] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'status': self.status.value,
            'progress': round(self.progress_percent, 1),
            'current_phase': self.current_phase.value,
            'current_task': self.current_task,
            'results': [r.to_dict() for r in self.partial_results],
            'scan_time': round(self.elapsed_seconds, 1),
            'last_update': self.last_update,
            'error': self.error_message,
            'attribution': self.attribution.to_dict() if self.attribution else None,
            'ranked': [s.to_dict() for s in self.ranked]
        }


# Records handed over by the content source and builder adapter


@dataclass(frozen=True)
class MenuItem:
    title: str
    target: str = ""
    edit_ref: str = ""
    menu: str = ""


@dataclass(frozen=True)
class FileRef:
    path: str
    content: str = ""
    modified_at: float = 0.0
    edit_ref: str = ""


@dataclass(frozen=True)
class WidgetRef:
    type: str
    title: str = ""
    serialized_content: str = ""
    area: str = ""
    edit_ref: str = ""


@dataclass(frozen=True)
class Record:
    id: Any
    body: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)
    title: str = ""


@dataclass(frozen=True)
class ExtensionRef:
    name: str
    version: str = ""
    files: Tuple[FileRef, ...] = ()
    edit_ref: str = ""


@dataclass(frozen=True)
class BuilderElement:
    type: str
    edit_ref: str
    builder: str
    text: str = ""
    link: str = ""
