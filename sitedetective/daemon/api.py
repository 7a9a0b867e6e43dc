"""HTTP API for the site detective daemon."""

import asyncio

from aiohttp import web
from loguru import logger

from .errors import InvalidControlAction, JobNotFound
from .models import PageContext


def create_api_app(daemon) -> web.Application:
    """Create the aiohttp application with routes."""
    app = web.Application()
    app['daemon'] = daemon

    app.router.add_post('/scan/quick', handle_quick_scan)
    app.router.add_post('/scan/deep', handle_start_deep_scan)
    app.router.add_get('/scan/deep/{job_id}', handle_job_progress)
    app.router.add_post('/scan/deep/{job_id}/export', handle_export)
    app.router.add_post('/scan/deep/{job_id}/{action}', handle_job_control)
    app.router.add_get('/status', handle_status)
    app.router.add_get('/health', handle_health)
    app.router.add_get('/metrics', handle_metrics)
    app.router.add_post('/shutdown', handle_shutdown)

    # Add CORS middleware for local development
    @web.middleware
    async def cors_middleware(request, handler):
        response = await handler(request)
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
        return response

    app.middlewares.append(cors_middleware)

    return app


def _error(code: str, message: str, status: int, **extra) -> web.Response:
    return web.json_response({'error': {'code': code, 'message': message, **extra}}, status=status)


def _not_found(e: JobNotFound) -> web.Response:
    return _error('job_not_found', str(e), 404, job_id=e.job_id, retryable=e.retryable)


async def _scan_request(request: web.Request):
    """Parse the common query/url/page_id/hints body. Returns (data, error response)."""
    try:
        data = await request.json()
    except ValueError:
        return None, _error('invalid_request', 'body must be JSON', 400)
    if not isinstance(data, dict) or not (data.get('query') or '').strip():
        return None, _error('invalid_request', 'query is required', 400)
    page_id = data.get('page_id')
    if page_id is not None:
        try:
            page_id = int(page_id)
        except (TypeError, ValueError):
            return None, _error('invalid_request', 'page_id must be an integer', 400)
    data['page'] = PageContext(url=data.get('url') or '', page_id=page_id)
    return data, None


async def handle_quick_scan(request: web.Request) -> web.Response:
    """Run a quick scan and return the ranked evidence."""
    detective = request.app['daemon'].detective
    data, error = await _scan_request(request)
    if error:
        return error

    try:
        result = await detective.quick_scan(data['query'], data['page'], data.get('hints'))
        return web.json_response(result.to_dict())
    except Exception as e:
        logger.error(f"Quick scan error: {e}")
        detective.metrics.increment_counter("api.error")
        return _error('internal_error', str(e), 500)


async def handle_start_deep_scan(request: web.Request) -> web.Response:
    """Start (or rejoin) a deep scan."""
    detective = request.app['daemon'].detective
    data, error = await _scan_request(request)
    if error:
        return error

    ticket = detective.start_deep_scan(data['query'], data['page'], data.get('hints'))
    if ticket.status == 'busy':
        return web.json_response(
            {'error': {'code': 'busy', 'message': ticket.message, 'retryable': True}},
            status=429,
        )
    return web.json_response(ticket.to_dict(), status=202)


async def handle_job_progress(request: web.Request) -> web.Response:
    detective = request.app['daemon'].detective
    job_id = request.match_info['job_id']
    try:
        progress = await detective.get_job_progress(job_id)
    except JobNotFound as e:
        return _not_found(e)
    return web.json_response(progress.to_dict())


async def handle_job_control(request: web.Request) -> web.Response:
    """Pause, resume or cancel a job."""
    detective = request.app['daemon'].detective
    job_id = request.match_info['job_id']
    action = request.match_info['action']
    try:
        status = detective.control_job(job_id, action)
    except JobNotFound as e:
        return _not_found(e)
    except InvalidControlAction as e:
        return _error('invalid_action', str(e), 400)
    return web.json_response({'job_id': job_id, 'action': action, 'status': status.value})


async def handle_export(request: web.Request) -> web.Response:
    detective = request.app['daemon'].detective
    job_id = request.match_info['job_id']
    fmt = request.query.get('format', 'csv')
    try:
        path = await detective.export_results(job_id, fmt)
    except JobNotFound as e:
        return _not_found(e)
    except ValueError as e:
        return _error('invalid_request', str(e), 400)
    except OSError as e:
        logger.error(f"Export error: {e}")
        return _error('export_failed', str(e), 500)
    return web.json_response({'job_id': job_id, 'format': fmt, 'path': str(path)})


async def handle_status(request: web.Request) -> web.Response:
    """Daemon status and statistics."""
    daemon = request.app['daemon']
    return web.json_response(daemon.get_status())


async def handle_health(request: web.Request) -> web.Response:
    """Health check endpoint."""
    detective = request.app['daemon'].detective
    breaker = getattr(detective.synthesizer.explainer, 'breaker', None)
    explainer = breaker.to_dict() if breaker else {'state': 'disabled'}
    degraded = bool(breaker and breaker.is_open)

    quick = detective.metrics.snapshot().get('latencies', {}).get('quick_scan')
    return web.json_response({
        'status': 'degraded' if degraded else 'ok',
        'explainer': explainer,
        'active_jobs': detective.jobs.active_jobs(),
        'latencies': {'quick_scan': quick},
    })


async def handle_metrics(request: web.Request) -> web.Response:
    """Export metrics."""
    format = request.query.get('format', 'json')
    metrics = request.app['daemon'].detective.metrics

    if format == 'prometheus':
        return web.Response(
            text=metrics.export_metrics('prometheus'),
            content_type='text/plain'
        )
    return web.Response(
        text=metrics.export_metrics('json'),
        content_type='application/json'
    )


async def handle_shutdown(request: web.Request) -> web.Response:
    """Shut the daemon down after responding."""
    daemon = request.app['daemon']

    async def shutdown():
        await asyncio.sleep(0.5)
        await daemon.stop()

    asyncio.create_task(shutdown())
    return web.json_response({'status': 'shutting down'})
