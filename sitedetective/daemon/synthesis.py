"""
Synthesis: turn ranked evidence into a single attribution.

The explainer is asked for a structured answer; if it fails, times out, or
answers without the expected markers, the top-ranked evidence is used as-is.
"""

import asyncio
import re
from collections import Counter
from typing import Any, Dict, List, Optional

from loguru import logger

from .errors import ExplainerError
from .metrics import MetricsCollector
from .models import Attribution, ScoredEvidence
from .sources import Explainer


HIGH_CONFIDENCE = 0.7
DIGEST_TOP = 5

# Markers must open a line; the colon is required
PRIMARY_RE = re.compile(r'^[ \t]*Primary Source:[ \t]*(\S[^\n]*)$', re.I | re.M)
LOCATION_RE = re.compile(r'^[ \t]*Location:[ \t]*(\S[^\n]*)$', re.I | re.M)
EDIT_RE = re.compile(r'^[ \t]*Edit (?:Link|Reference):[ \t]*(\S[^\n]*)$', re.I | re.M)


def build_digest(query: str, ranked: List[ScoredEvidence]) -> Dict[str, Any]:
    """Compact summary of ranked evidence for the explainer."""
    return {
        'query': query,
        'total': len(ranked),
        'by_source_type': dict(Counter(s.item.source_type.value for s in ranked)),
        'high_confidence': sum(1 for s in ranked if s.item.confidence > HIGH_CONFIDENCE),
        'top': [
            {
                'source_type': s.item.source_type.value,
                'location': s.item.location,
                'context': s.item.context,
                'edit_reference': s.item.edit_reference,
                'confidence': s.item.confidence,
                'combined_score': round(s.combined_score, 3),
            }
            for s in ranked[:DIGEST_TOP]
        ],
    }


def parse_markers(text: str) -> Dict[str, Optional[str]]:
    markers = {}
    for name, pattern in (('primary', PRIMARY_RE), ('location', LOCATION_RE), ('edit', EDIT_RE)):
        match = pattern.search(text or "")
        markers[name] = match.group(1).strip() if match else None
    return markers


def fallback_attribution(ranked: List[ScoredEvidence], digest: Dict[str, Any],
                         reason: str = "") -> Attribution:
    """Attribution taken straight from the top combined score."""
    if not ranked:
        return Attribution(
            primary_source=None,
            label="No matching source found",
            location="",
            edit_reference="",
            narrative="No evidence matched the question. Try a deep scan or rephrase it.",
            used_fallback=True,
            digest=digest,
        )
    top = ranked[0]
    narrative = (
        f"Most likely controlled by {top.item.source_type.value} at {top.item.location} "
        f"(confidence {top.item.confidence:.0%})."
    )
    if reason:
        narrative += f" {reason}"
    return Attribution(
        primary_source=top,
        label=f"{top.item.source_type.value}: {top.item.location}",
        location=top.item.location,
        edit_reference=top.item.edit_reference,
        narrative=narrative,
        used_fallback=True,
        digest=digest,
    )


def _match_location(location: str, ranked: List[ScoredEvidence]) -> Optional[ScoredEvidence]:
    wanted = location.lower().strip('`"\' ')
    for scored in ranked:
        candidate = scored.item.location.lower()
        if candidate and (candidate in wanted or wanted in candidate):
            return scored
    return None


class Synthesizer:
    """Asks the explainer for an attribution with a hard timeout."""

    def __init__(self, explainer: Explainer, timeout_ms: int = 45_000,
                 metrics: Optional[MetricsCollector] = None):
        self.explainer = explainer
        self.timeout_ms = timeout_ms
        self.metrics = metrics

    async def synthesize(self, query: str, ranked: List[ScoredEvidence],
                         timeout_ms: Optional[int] = None) -> Attribution:
        digest = build_digest(query, ranked)
        if not ranked:
            return fallback_attribution(ranked, digest)

        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        if timeout_ms <= 0:
            return self._fallback(ranked, digest, "No time left for analysis.")

        loop = asyncio.get_running_loop()
        start = loop.time()
        try:
            text = await asyncio.wait_for(
                self.explainer.explain(query, digest, timeout_ms),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Explainer timed out after {timeout_ms}ms")
            return self._fallback(ranked, digest, "Analysis timed out.")
        except ExplainerError as e:
            logger.warning(f"Explainer unavailable: {e}")
            return self._fallback(ranked, digest)
        except Exception as e:
            logger.error(f"Explainer raised unexpectedly: {e}")
            return self._fallback(ranked, digest)
        finally:
            if self.metrics:
                self.metrics.record_latency("synthesis", (loop.time() - start) * 1000)

        markers = parse_markers(text)
        if not markers['primary'] or not markers['location']:
            logger.warning("Explainer answer is missing Primary Source/Location markers")
            return self._fallback(ranked, digest)

        matched = _match_location(markers['location'], ranked)
        primary = matched or ranked[0]
        return Attribution(
            primary_source=primary,
            label=markers['primary'],
            location=markers['location'],
            edit_reference=markers['edit'] or primary.item.edit_reference,
            narrative=text.strip(),
            used_fallback=False,
            digest=digest,
        )

    def _fallback(self, ranked: List[ScoredEvidence], digest: Dict[str, Any],
                  reason: str = "") -> Attribution:
        if self.metrics:
            self.metrics.increment_counter("explainer.fallback")
        return fallback_attribution(ranked, digest, reason)
