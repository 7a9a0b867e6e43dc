"""End-to-end tests for the SiteDetective facade."""

import asyncio
import json

import pytest
import yaml

from sitedetective.daemon.config import Config
from sitedetective.daemon.errors import JobNotFound
from sitedetective.daemon.load_monitor import LoadMonitor
from sitedetective.daemon.models import JobStatus, PageContext, SourceType
from sitedetective.daemon.service import SiteDetective


SNAPSHOT = {
    'menus': [{'title': 'Contact', 'target': '/contact', 'menu': 'Main Menu',
               'edit_ref': 'nav-menus.php?menu=2'}],
    'templates': [{'path': 'themes/acme/footer.php',
                   'content': '<footer>\n<a href="/contact">Contact us</a>\n</footer>'}],
    'records': [{'id': 42, 'title': 'Home', 'body': '<p>Call or contact us today</p>'}],
}


@pytest.fixture
def config(tmp_path):
    return Config(
        scan={'inter_batch_delay_seconds': 0},
        export={'directory': tmp_path / "exports"},
    )


@pytest.fixture
def detective(config, site, builders):
    detective = SiteDetective(config, site, builders=builders)
    detective.jobs.load_monitor = LoadMonitor(active_jobs=detective.jobs.active_jobs,
                                              memory_limit_mb=1024, memory_used=lambda: 0)
    return detective


async def wait_for_terminal(detective, job_id, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        progress = await detective.get_job_progress(job_id)
        if progress.status.is_terminal:
            return progress
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"job stuck at {progress.to_dict()}")
        await asyncio.sleep(0.02)


class TestQuickScan:

    @pytest.mark.asyncio
    async def test_accepts_hint_dicts(self, detective, home_page):
        hints = [{'selector': 'footer a.cta', 'text': 'Get a quote', 'confidence': 0.8,
                  'type': 'a'}]
        result = await detective.quick_scan("get a quote", home_page, hints)
        types = {s.item.source_type for s in result.scored_evidence}
        assert SourceType.DOM_ELEMENT in types
        assert result.to_dict()['scan_type'] == 'quick'


class TestDeepScan:

    @pytest.mark.asyncio
    async def test_scan_completes_and_exports(self, detective, home_page, config):
        await detective.start()
        try:
            ticket = detective.start_deep_scan("where is the contact button", home_page)
            assert ticket.to_dict()['scan_type'] == 'deep'

            progress = await wait_for_terminal(detective, ticket.job_id)
            assert progress.status == JobStatus.COMPLETED
            assert progress.attribution is not None
            assert progress.progress_percent == 100.0

            path = await detective.export_results(ticket.job_id, "json")
            assert path.parent == config.export.directory
            document = json.loads(path.read_text(encoding="utf-8"))
            assert document['meta']['job_id'] == ticket.job_id
            assert document['results']
        finally:
            await detective.stop()

    @pytest.mark.asyncio
    async def test_cancel_stops_scheduling(self, detective, home_page):
        ticket = detective.start_deep_scan("contact", home_page)
        assert detective.control_job(ticket.job_id, "cancel") == JobStatus.CANCELLED
        assert detective.scheduler.pending() == []
        progress = await detective.get_job_progress(ticket.job_id)
        assert progress.status == JobStatus.CANCELLED
        await detective.stop()

    @pytest.mark.asyncio
    async def test_unknown_job(self, detective):
        with pytest.raises(JobNotFound):
            await detective.get_job_progress("nope")
        with pytest.raises(JobNotFound):
            await detective.export_results("nope")

    def test_stats(self, detective):
        stats = detective.stats()
        assert stats['active_jobs'] == 0
        assert stats['pending_batches'] == 0
        assert 'cache' in stats


class TestFromConfig:

    @pytest.mark.asyncio
    async def test_loads_snapshot(self, tmp_path):
        snapshot = tmp_path / "site.yaml"
        snapshot.write_text(yaml.safe_dump(SNAPSHOT), encoding="utf-8")
        config = Config(site={'snapshot_path': snapshot})

        detective = SiteDetective.from_config(config)
        result = await detective.quick_scan("contact", PageContext(page_id=42))
        locations = {s.item.location for s in result.scored_evidence}
        assert "Main Menu > Contact" in locations
        assert "themes/acme/footer.php" in locations

    def test_empty_site_without_snapshot(self):
        detective = SiteDetective.from_config(Config())
        assert detective.source.list_menus() == []
