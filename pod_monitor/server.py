import asyncio
import logging
import time
from typing import Any, Dict, Optional

from aiohttp import web

from .config import (
    DEFAULT_HISTORY_INTERVAL,
    DEFAULT_HISTORY_PERIOD,
    NETWORK_RPC_ENDPOINTS,
    NODE_BATCH_LIMIT,
    NODE_RPC_PORT,
    REGISTRY_CACHE_TTL_SECONDS,
    SERVER_HOST,
    SERVER_PORT,
)
from .history import COMPARISON_INTERVAL_FOR_PERIOD, CHART_INTERVAL_FOR_PERIOD, to_epoch_ms
from .models import OFFLINE
from .rpc_client import node_rpc_endpoint
from .tasks import cleanup_background_tasks, start_background_tasks

log = logging.getLogger("PodMonitor.Server")


def json_error(message: str, status: int = 400) -> web.Response:
    return web.json_response({'success': False, 'error': message}, status=status)


def _network_or_none(request) -> Optional[str]:
    network = request.match_info['network']
    return network if network in request.app['networks'] else None


@web.middleware
async def cors_middleware(request, handler):
    """Allow the dashboard to query the API from another origin."""
    if request.method == 'OPTIONS':
        response = web.Response()
    else:
        response = await handler(request)
    response.headers['Access-Control-Allow-Origin'] = '*'
    response.headers['Access-Control-Allow-Methods'] = 'GET, POST, DELETE, OPTIONS'
    response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
    return response


async def handle_index(request):
    return web.json_response({
        'status': 'ok',
        'service': 'Pod Monitor',
        'networks': list(request.app['networks']),
        'features': ['live-data', 'historical-data', 'charts', 'alerts'],
    })


async def handle_health(request):
    persistence = request.app['persistence']
    scheduler = request.app.get('scheduler')
    return web.json_response({
        'status': 'healthy',
        'database': 'connected' if persistence.available else 'disconnected',
        'scheduler': scheduler.status() if scheduler else None,
    })


async def handle_network_history(request):
    network = _network_or_none(request)
    if network is None:
        return json_error(f"Invalid network: {request.match_info['network']}")
    period = request.query.get('period', DEFAULT_HISTORY_PERIOD)
    interval = request.query.get('interval', DEFAULT_HISTORY_INTERVAL)

    data = await request.app['persistence'].get_network_history(network, period, interval)
    return web.json_response({
        'success': True,
        'network': network,
        'period': period,
        'interval': interval,
        'count': len(data),
        'data': data,
    })


async def handle_node_history(request):
    address = request.match_info['address']
    period = request.query.get('period', DEFAULT_HISTORY_PERIOD)

    data = await request.app['persistence'].get_node_history(address, period)
    return web.json_response({
        'success': True,
        'address': address,
        'period': period,
        'count': len(data),
        'data': data,
    })


async def handle_history_stats(request):
    period = request.query.get('period', DEFAULT_HISTORY_PERIOD)
    persistence = request.app['persistence']
    return web.json_response({
        'success': True,
        'period': period,
        'aggregated': await persistence.get_aggregated_stats(period),
        'latest': await persistence.get_latest_snapshots(),
    })


async def handle_history_latest(request):
    collector = request.app['collector']
    network = request.query.get('network')
    if network and network not in request.app['networks']:
        return json_error(f"Invalid network: {network}")
    last_updated = collector.fleet.last_updated()
    return web.json_response({
        'success': True,
        'last_updated': last_updated.isoformat() if last_updated else None,
        'data': collector.fleet.to_payload(network),
    })


async def handle_network_charts(request):
    network = _network_or_none(request)
    if network is None:
        return json_error(f"Invalid network: {request.match_info['network']}")
    period = request.query.get('period', DEFAULT_HISTORY_PERIOD)
    interval = CHART_INTERVAL_FOR_PERIOD.get(period, DEFAULT_HISTORY_INTERVAL)

    rows = await request.app['persistence'].get_network_history(network, period, interval)
    points = [(to_epoch_ms(row['timestamp']), row) for row in rows]
    return web.json_response({
        'success': True,
        'network': network,
        'period': period,
        'interval': interval,
        'charts': {
            'nodes': [{'time': t, 'online': r['online_nodes'], 'offline': r['offline_nodes'],
                       'total': r['total_pods']} for t, r in points],
            'resources': [{'time': t, 'cpu': r['avg_cpu'], 'ram': r['avg_ram']} for t, r in points],
            'storage': [{'time': t, 'storage': r['total_storage'], 'streams': r['total_streams']}
                        for t, r in points],
        },
    })


async def handle_comparison_charts(request):
    period = request.query.get('period', DEFAULT_HISTORY_PERIOD)
    interval = COMPARISON_INTERVAL_FOR_PERIOD.get(period, '1h')
    networks = list(request.app['networks'])
    persistence = request.app['persistence']

    comparison: Dict[str, Any] = {}
    for network in networks:
        rows = await persistence.get_network_history(network, period, interval)
        comparison[network] = [{
            'time': to_epoch_ms(r['timestamp']),
            'online': r['online_nodes'],
            'total': r['total_pods'],
            'avg_cpu': r['avg_cpu'],
        } for r in rows]

    return web.json_response({
        'success': True,
        'period': period,
        'interval': interval,
        'networks': networks,
        'data': comparison,
    })


def _cached_registry(app, network: str) -> Optional[Dict[str, Any]]:
    entry = app['registry_cache'].get(network)
    if entry and (time.time() - entry['timestamp']) < REGISTRY_CACHE_TTL_SECONDS:
        return entry['data']
    return None


async def _registry_payload(app, network: str):
    """Directory listing for one network, served from cache for a minute. Returns (payload, cached)."""
    cached = _cached_registry(app, network)
    if cached is not None:
        return cached, True
    registry = await app['collector'].client.fetch_registry(network)
    if registry is None:
        return None, False
    data = {
        'pods': [pod.to_dict() for pod in registry.pods],
        'total_count': registry.total_count,
    }
    app['registry_cache'][network] = {'timestamp': time.time(), 'data': data}
    return data, False


async def handle_network_pods(request):
    network = _network_or_none(request)
    if network is None:
        return json_error(f"Invalid network: {request.match_info['network']}")
    data, cached = await _registry_payload(request.app, network)
    if data is None:
        return json_error(f"Directory for {network} is unavailable", status=502)
    return web.json_response({**data, 'cached': cached})


async def handle_all_pods(request):
    results = {}
    for network in request.app['networks']:
        data, cached = await _registry_payload(request.app, network)
        if data is None:
            results[network] = {'error': f"Directory for {network} is unavailable"}
        else:
            results[network] = {**data, 'cached': cached}
    return web.json_response(results)


async def handle_node_probe(request):
    ip = request.match_info['ip']
    port = request.query.get('port', str(NODE_RPC_PORT))
    if not port.isdigit() or not 0 < int(port) < 65536:
        return json_error(f"Invalid port: {port}")
    probe = await request.app['collector'].client.probe_node(ip, port=int(port))
    return web.json_response({'address': ip, 'endpoint': node_rpc_endpoint(ip, int(port)), **probe})


async def handle_nodes_batch(request):
    try:
        body = await request.json()
    except ValueError:
        return json_error("Request body must be JSON")
    addresses = body.get('addresses') if isinstance(body, dict) else None
    if not isinstance(addresses, list) or not all(isinstance(a, str) and a for a in addresses):
        return json_error("Missing addresses array")

    client = request.app['collector'].client
    addresses = addresses[:NODE_BATCH_LIMIT]
    probes = await asyncio.gather(*(client.probe_node(address) for address in addresses),
                                  return_exceptions=True)
    nodes = []
    for address, probe in zip(addresses, probes):
        if isinstance(probe, Exception):
            log.warning(f"Probe of {address} failed: {probe}")
            probe = {'status': OFFLINE}
        nodes.append({'address': address, **probe})
    return web.json_response({'nodes': nodes})


async def _subscription_body(request):
    try:
        body = await request.json()
    except ValueError:
        return None, json_error("Request body must be JSON")
    if not isinstance(body, dict) or not body.get('channel') or not body.get('pubkey'):
        return None, json_error("Both 'channel' and 'pubkey' are required")
    return body, None


async def handle_list_subscriptions(request):
    channel = request.match_info['channel']
    try:
        pubkeys = request.app['alert_engine'].list_subscriptions(channel)
    except ValueError as e:
        return json_error(str(e))
    return web.json_response({'success': True, 'channel': channel, 'pubkeys': pubkeys})


async def handle_subscribe(request):
    body, error = await _subscription_body(request)
    if error:
        return error
    try:
        added = request.app['alert_engine'].subscribe(body['channel'], body['pubkey'])
    except ValueError as e:
        return json_error(str(e))
    return web.json_response({'success': True, 'subscribed': added}, status=201 if added else 200)


async def handle_unsubscribe(request):
    body, error = await _subscription_body(request)
    if error:
        return error
    try:
        removed = request.app['alert_engine'].unsubscribe(body['channel'], body['pubkey'])
    except ValueError as e:
        return json_error(str(e))
    if not removed:
        return json_error("Subscription not found", status=404)
    return web.json_response({'success': True, 'unsubscribed': True})


def create_app(persistence=None, collector=None, alert_engine=None, scheduler=None,
               networks=None, with_background_tasks: bool = False) -> web.Application:
    """
    Build the HTTP app. Components can be injected directly; with
    ``with_background_tasks`` they are created on startup instead.
    """
    app = web.Application(middlewares=[cors_middleware])
    app['networks'] = dict(networks if networks is not None else NETWORK_RPC_ENDPOINTS)
    app['registry_cache'] = {}
    if persistence is not None:
        app['persistence'] = persistence
    if collector is not None:
        app['collector'] = collector
    if alert_engine is not None:
        app['alert_engine'] = alert_engine
    if scheduler is not None:
        app['scheduler'] = scheduler

    if with_background_tasks:
        app.on_startup.append(start_background_tasks)
        app.on_cleanup.append(cleanup_background_tasks)

    app.router.add_get('/', handle_index)
    app.router.add_get('/health', handle_health)
    app.router.add_get('/api/pods', handle_all_pods)
    app.router.add_get('/api/pods/{network}', handle_network_pods)
    app.router.add_get('/api/node/{ip}', handle_node_probe)
    app.router.add_post('/api/nodes/batch', handle_nodes_batch)
    app.router.add_get('/api/history/network/{network}', handle_network_history)
    app.router.add_get('/api/history/node/{address}', handle_node_history)
    app.router.add_get('/api/history/stats', handle_history_stats)
    app.router.add_get('/api/history/latest', handle_history_latest)
    app.router.add_get('/api/charts/network/{network}', handle_network_charts)
    app.router.add_get('/api/charts/comparison', handle_comparison_charts)
    app.router.add_get('/api/alerts/subscriptions/{channel:.+}', handle_list_subscriptions)
    app.router.add_post('/api/alerts/subscriptions', handle_subscribe)
    app.router.add_delete('/api/alerts/subscriptions', handle_unsubscribe)
    return app


def run_server(host: str = SERVER_HOST, port: int = SERVER_PORT):
    app = create_app(with_background_tasks=True)
    log.info(f"Server starting on http://{host}:{port}")
    log.info(f"Networks: {', '.join(app['networks'])}")
    web.run_app(app, host=host, port=port)
