"""Tests for the budgeted quick scan."""

from unittest.mock import Mock

import pytest

from sitedetective.daemon import bus as events
from sitedetective.daemon.metrics import MetricsCollector
from sitedetective.daemon.models import (
    EvidenceItem,
    MenuItem,
    PageContext,
    Query,
    SourceType,
    StructuralHint,
)
from sitedetective.daemon.providers import MenuProvider, ScanProvider, TemplateProvider
from sitedetective.daemon.quick_scan import QuickScanOrchestrator, quick_confidence
from sitedetective.daemon.sources import StaticContentSource
from sitedetective.daemon.synthesis import Synthesizer


class SlowProvider(ScanProvider):
    """Takes `took` seconds of fake clock time and finds nothing."""

    name = "slow"
    estimated_cost = 0.1

    def __init__(self, clock, took):
        self.clock = clock
        self.took = took

    def units(self, context):
        return [None]

    def scan_units(self, units, terms, context):
        self.clock.advance(self.took)
        return []


class BrokenProvider(ScanProvider):
    name = "broken"

    def units(self, context):
        return [None]

    def scan_units(self, units, terms, context):
        raise RuntimeError("database went away")


class TestQuickScan:

    @pytest.mark.asyncio
    async def test_contact_button_found_in_menu(self):
        """A menu item named Contact answers a question about the contact button."""
        site = StaticContentSource(menus=[MenuItem(title="Contact", target="/contact")])
        result = await QuickScanOrchestrator(site).scan_text("where is the contact button")

        assert result.primary_source.item.source_type == SourceType.NAVIGATION_MENU
        assert result.confidence > 0.6
        assert not result.timed_out
        assert result.skipped_providers == []

    @pytest.mark.asyncio
    async def test_all_quick_providers_contribute(self, site, builders, home_page):
        hints = [StructuralHint(selector=".site-footer a.cta", text="Get a quote",
                                confidence=0.8, element_type="a")]
        orchestrator = QuickScanOrchestrator(site, builders)
        result = await orchestrator.scan(Query("get a quote", home_page, tuple(hints)))

        types = {s.item.source_type for s in result.scored_evidence}
        assert SourceType.DOM_ELEMENT in types
        assert SourceType.TEMPLATE_FILE in types
        assert [t.text for t in result.terms] == ["get", "quote"]

    @pytest.mark.asyncio
    async def test_budget_skips_expensive_providers(self, site, clock):
        providers = [SlowProvider(clock, took=4.5), MenuProvider(), TemplateProvider()]
        metrics = MetricsCollector()
        orchestrator = QuickScanOrchestrator(site, providers=providers, budget_seconds=5.0,
                                             metrics=metrics, clock=clock)
        result = await orchestrator.scan_text("contact")

        assert result.skipped_providers == ["templates"]
        assert result.timed_out
        assert result.primary_source.item.location == "Main Menu > Contact"
        assert metrics.counters["provider.skipped"] == 1

    @pytest.mark.asyncio
    async def test_provider_error_is_contained(self, site):
        orchestrator = QuickScanOrchestrator(site, providers=[BrokenProvider(), MenuProvider()])
        result = await orchestrator.scan_text("contact")

        assert result.provider_errors == {"broken": "database went away"}
        assert len(result.scored_evidence) == 1

    @pytest.mark.asyncio
    async def test_no_evidence(self, site):
        result = await QuickScanOrchestrator(site).scan_text("xylophone", PageContext())
        assert result.primary_source is None
        assert result.scored_evidence == []
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_analysis_and_event(self, site, make_explainer):
        answer = "Primary Source: Menu\nLocation: Main Menu > Contact\nEdit Link: nav-menus.php"
        event_bus = Mock()
        orchestrator = QuickScanOrchestrator(
            site,
            synthesizer=Synthesizer(make_explainer(answer=answer)),
            quick_analysis=True,
            event_bus=event_bus,
        )
        result = await orchestrator.scan_text("contact")

        assert result.analysis is not None
        assert not result.analysis.used_fallback
        event_bus.publish.assert_called_once()
        assert event_bus.publish.call_args.args[0] == events.QUICK_SCAN_COMPLETED


def test_quick_confidence_uses_top_three():
    items = [
        EvidenceItem(source_type=SourceType.WIDGET, location=str(i), matched_text="",
                     confidence=c)
        for i, c in enumerate([0.3, 0.9, 0.6, 0.9])
    ]
    assert quick_confidence(items) == 0.8
    assert quick_confidence([]) == 0.0
