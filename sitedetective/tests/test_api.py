"""Tests for the daemon's HTTP API."""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, Mock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from sitedetective.daemon.api import create_api_app
from sitedetective.daemon.config import Config
from sitedetective.daemon.main import DetectiveDaemon
from sitedetective.daemon.service import SiteDetective


@asynccontextmanager
async def serve(site, builders, tmp_path, **scan):
    config = Config(scan={'inter_batch_delay_seconds': 60, **scan},
                    export={'directory': tmp_path})
    detective = SiteDetective(config, site, builders=builders)
    daemon = DetectiveDaemon(config, detective=detective)
    client = TestClient(TestServer(create_api_app(daemon)))
    await client.start_server()
    try:
        yield client
    finally:
        await client.close()
        await detective.stop()


class TestQuickScan:

    @pytest.mark.asyncio
    async def test_quick_scan(self, site, builders, tmp_path):
        async with serve(site, builders, tmp_path) as client:
            resp = await client.post('/scan/quick', json={'query': 'contact', 'page_id': 42})
            assert resp.status == 200
            body = await resp.json()
            assert body['scan_type'] == 'quick'
            assert body['primary_source'] is not None
            assert 'Main Menu > Contact' in {r['location'] for r in body['results']}
            assert resp.headers['Access-Control-Allow-Origin'] == '*'

    @pytest.mark.asyncio
    async def test_missing_query(self, site, builders, tmp_path):
        async with serve(site, builders, tmp_path) as client:
            resp = await client.post('/scan/quick', json={'url': 'https://acme.test/'})
            assert resp.status == 400
            assert (await resp.json())['error']['code'] == 'invalid_request'

    @pytest.mark.asyncio
    async def test_bad_page_id(self, site, builders, tmp_path):
        async with serve(site, builders, tmp_path) as client:
            resp = await client.post('/scan/quick', json={'query': 'contact', 'page_id': 'home'})
            assert resp.status == 400


class TestDeepScan:

    @pytest.mark.asyncio
    async def test_start_poll_control(self, site, builders, tmp_path):
        async with serve(site, builders, tmp_path) as client:
            resp = await client.post('/scan/deep', json={'query': 'contact', 'page_id': 42})
            assert resp.status == 202
            ticket = await resp.json()
            job_id = ticket['job_id']
            assert ticket['scan_type'] == 'deep'

            resp = await client.get(f'/scan/deep/{job_id}')
            assert resp.status == 200
            assert (await resp.json())['job_id'] == job_id

            resp = await client.post(f'/scan/deep/{job_id}/pause')
            assert (await resp.json())['status'] == 'paused'

            resp = await client.post(f'/scan/deep/{job_id}/restart')
            assert resp.status == 400
            assert (await resp.json())['error']['code'] == 'invalid_action'

            resp = await client.post(f'/scan/deep/{job_id}/export?format=csv')
            assert resp.status == 200
            assert (await resp.json())['path'].endswith('.csv')

            resp = await client.post(f'/scan/deep/{job_id}/export?format=xml')
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_unknown_job(self, site, builders, tmp_path):
        async with serve(site, builders, tmp_path) as client:
            resp = await client.get('/scan/deep/missing')
            assert resp.status == 404
            error = (await resp.json())['error']
            assert error['code'] == 'job_not_found'
            assert error['job_id'] == 'missing'
            assert error['retryable'] is True

    @pytest.mark.asyncio
    async def test_busy(self, site, builders, tmp_path):
        async with serve(site, builders, tmp_path, max_concurrent_jobs=1) as client:
            first = await client.post('/scan/deep', json={'query': 'contact'})
            assert first.status == 202
            resp = await client.post('/scan/deep', json={'query': 'newsletter'})
            assert resp.status == 429
            error = (await resp.json())['error']
            assert error['code'] == 'busy'
            assert error['retryable'] is True


class TestStatus:

    @pytest.mark.asyncio
    async def test_health_and_status(self, site, builders, tmp_path):
        async with serve(site, builders, tmp_path) as client:
            health = await (await client.get('/health')).json()
            assert health['status'] == 'ok'
            assert health['explainer'] == {'state': 'disabled'}

            status = await (await client.get('/status')).json()
            assert status['status'] == 'running'
            assert status['stats']['active_jobs'] == 0


class TestShutdown:

    @pytest.mark.asyncio
    async def test_concurrent_stops_share_one_teardown(self):
        """A second stop() waits for the teardown already in flight."""
        async def slow_stop():
            await asyncio.sleep(0.05)

        detective = Mock()
        detective.stop = AsyncMock(side_effect=slow_stop)
        daemon = DetectiveDaemon(Config(), detective=detective)

        first = asyncio.create_task(daemon.stop())
        await asyncio.sleep(0)
        assert not daemon.stopped.is_set()

        await daemon.stop()
        assert daemon.stopped.is_set()
        await first
        detective.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stopped_set_even_when_teardown_fails(self):
        detective = Mock()
        detective.stop = AsyncMock(side_effect=RuntimeError("scheduler wedged"))
        daemon = DetectiveDaemon(Config(), detective=detective)

        with pytest.raises(RuntimeError):
            await daemon.stop()
        assert daemon.stopped.is_set()
