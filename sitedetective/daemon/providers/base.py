"""Evidence provider interface and shared scan context."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from ..cache import ResultCache
from ..models import EvidenceItem, PageContext, ScanPhase, SearchTerm, StructuralHint
from ..sources import BuilderAdapter, ContentSource


@dataclass
class ScanContext:
    """Everything a provider may read during one scan."""
    page: PageContext
    source: ContentSource
    builders: Optional[BuilderAdapter] = None
    hints: Tuple[StructuralHint, ...] = ()
    cache: Optional[ResultCache] = None
    quick: bool = True
    file_list_ttl: float = 1800
    extras: dict = field(default_factory=dict)


class ScanProvider(ABC):
    """
    One kind of source that can control a visible element.

    Providers are read-only against the site: scanning twice with the same
    input yields the same evidence. The deep scan works through units()
    in slices, so scan() must equal scan_units() over the full unit list.
    """

    name: str = "provider"
    phase: Optional[ScanPhase] = None
    # Seconds a quick-scan run is expected to take
    estimated_cost: float = 0.1

    @abstractmethod
    def units(self, context: ScanContext) -> Sequence[Any]:
        """The provider's input list, in a stable order."""

    @abstractmethod
    def scan_units(self, units: Sequence[Any], terms: List[SearchTerm],
                   context: ScanContext) -> List[EvidenceItem]:
        """Scan a slice of units."""

    def scan(self, terms: List[SearchTerm], context: ScanContext) -> List[EvidenceItem]:
        if not terms and not context.hints:
            return []
        return self.scan_units(self.units(context), terms, context)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
