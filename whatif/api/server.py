from __future__ import annotations
from typing import Any
from flask import Flask, request, jsonify, Response

import logging
import os
import time
from collections import deque, defaultdict

from whatif.advisor.budget import ChannelPerformance
from whatif.api.orchestrator import WhatIfService, build_default_service
from whatif.config.env import configure_logging
from whatif.errors import PersistenceError, RequestSuperseded, ScenarioNotFound, SnapshotReadError, ValidationError
from whatif.exports.reports import scenario_md
from whatif.exports.writers import write_comparison, write_monthly_trend, write_scenarios
from whatif.forecasting.assumptions import MODE_SIMPLE, parameters_from_dict, parameters_to_dict
from whatif.forecasting.engine import WhatIfResult
from whatif.metrics.kpi import as_float

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Configuration helpers (overridable via app.config in tests)

def _get_api_key() -> str | None:
    if 'API_KEY' in app.config:
        return app.config.get('API_KEY')
    return os.environ.get('API_KEY')


def _get_rate_limit() -> tuple[int, float]:
    n = app.config.get('RATE_LIMIT_N')
    w = app.config.get('RATE_LIMIT_WINDOW_SEC')
    if n is None:
        n = int(os.environ.get('RATE_LIMIT_N', '20'))
    if w is None:
        w = float(os.environ.get('RATE_LIMIT_WINDOW_SEC', '1.0'))
    return int(n), float(w)


def _service() -> WhatIfService:
    svc = app.config.get('WHATIF_SERVICE')
    if svc is None:
        svc = build_default_service()
        app.config['WHATIF_SERVICE'] = svc
    return svc


_recent: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=100))


def _client_ip() -> str:
    xff = request.headers.get('X-Forwarded-For')
    if xff:
        return xff.split(',')[0].strip()
    return request.remote_addr or 'anon'


def _check_api_key():
    api_key = _get_api_key()
    if api_key:
        provided = request.headers.get('X-API-Key')
        if provided != api_key:
            return jsonify({'error': 'unauthorized'}), 401
    return None


def _check_rate_limit(ip: str):
    n, window = _get_rate_limit()
    if n <= 0:
        return None
    now = time.time()
    dq = _recent[ip]
    while dq and now - dq[0] > window:
        dq.popleft()
    if len(dq) >= n:
        retry = max(0.0, window - (now - dq[0]))
        resp = jsonify({'error': 'rate_limited'})
        resp.status_code = 429
        resp.headers['Retry-After'] = f"{retry:.2f}"
        return resp
    dq.append(now)
    return None


@app.before_request
def _auth_and_rate_limit():
    if request.path.startswith('/tenants'):
        unauthorized = _check_api_key()
        if unauthorized is not None:
            return unauthorized
        if request.method in ('POST', 'PATCH', 'DELETE') and not request.path.endswith('/project'):
            rl = _check_rate_limit(_client_ip())
            if rl is not None:
                return rl
    return None


# Domain errors -> JSON

@app.errorhandler(ValidationError)
def _validation_error(e: ValidationError):
    return jsonify({'error': 'invalid', 'detail': str(e)}), 400


@app.errorhandler(ScenarioNotFound)
def _not_found(e: ScenarioNotFound):
    return jsonify({'error': 'not_found', 'detail': str(e)}), 404


@app.errorhandler(PersistenceError)
def _persistence_error(e: PersistenceError):
    logger.error("persistence failure on %s %s: %s", request.method, request.path, e)
    return jsonify({'error': 'storage_unavailable'}), 503


@app.errorhandler(SnapshotReadError)
def _snapshot_error(e: SnapshotReadError):
    logger.error("snapshot read failure on %s: %s", request.path, e)
    return jsonify({'error': 'metrics_unavailable'}), 502


@app.errorhandler(RequestSuperseded)
def _superseded(e: RequestSuperseded):
    return jsonify({'error': 'superseded'}), 409


def _payload() -> dict[str, Any]:
    payload = request.get_json(force=True, silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError('request body must be a JSON object')
    return payload


def _horizon(payload: dict[str, Any]) -> int | None:
    h = payload.get('horizonMonths', request.args.get('horizonMonths'))
    if h is None:
        return None
    try:
        months = float(h)
    except (TypeError, ValueError):
        raise ValidationError('horizonMonths must be an integer')
    if isinstance(h, bool) or not months.is_integer():
        raise ValidationError('horizonMonths must be an integer')
    return int(months)


# Metrics & defaults

@app.get('/tenants/<tid>/metrics')
def get_metrics(tid: str):
    return jsonify(_service().load_metrics(tid).to_dict())


@app.get('/tenants/<tid>/defaults')
def get_defaults(tid: str):
    d = _service().load_defaults(tid)
    return jsonify({
        'simple': parameters_to_dict(d.simple),
        'retail': parameters_to_dict(d.retail),
        'hasData': d.has_data,
    })


@app.post('/tenants/<tid>/project')
def post_project(tid: str):
    payload = _payload()
    mode = payload.get('mode') or MODE_SIMPLE
    params = parameters_from_dict(mode, payload.get('parameters'))
    proj = _service().simulate(tid, mode, params, _horizon(payload))
    return jsonify(proj.to_dict())


# Scenarios

@app.get('/tenants/<tid>/scenarios')
def list_scenarios(tid: str):
    rows = _service().list_scenarios(tid)
    if request.args.get('format') == 'csv':
        return Response(write_scenarios(rows), mimetype='text/csv')
    return jsonify({'scenarios': [s.to_dict() for s in rows]})


@app.post('/tenants/<tid>/scenarios')
def create_scenario(tid: str):
    payload = _payload()
    mode = payload.get('mode') or MODE_SIMPLE
    params = parameters_from_dict(mode, payload.get('parameters'))
    s = _service().save_scenario(
        tid,
        name=payload.get('name') or '',
        mode=mode,
        parameters=params,
        created_by=payload.get('createdBy') or request.headers.get('X-User-Id'),
        description=payload.get('description'),
        horizon_months=_horizon(payload),
        is_favorite=bool(payload.get('isFavorite', False)),
        is_primary=bool(payload.get('isPrimary', False)),
    )
    return jsonify(s.to_dict()), 201


@app.get('/tenants/<tid>/scenarios/compare')
def compare_scenarios(tid: str):
    rows = _service().compare(tid)
    if request.args.get('format') == 'csv':
        return Response(write_comparison(rows), mimetype='text/csv')
    return jsonify({'comparison': [r.to_dict() for r in rows]})


@app.get('/tenants/<tid>/scenarios/<sid>')
def get_scenario(tid: str, sid: str):
    return jsonify(_service().store.get(tid, sid).to_dict())


@app.patch('/tenants/<tid>/scenarios/<sid>')
def patch_scenario(tid: str, sid: str):
    payload = _payload()
    changes: dict[str, Any] = {}
    for src, dst in (('name', 'name'), ('description', 'description'), ('isFavorite', 'is_favorite')):
        if src in payload:
            changes[dst] = payload[src]
    if 'mode' in payload:
        changes['mode'] = payload['mode']
    if 'parameters' in payload:
        mode = payload.get('mode') or _service().store.get(tid, sid).mode
        changes['parameters'] = parameters_from_dict(mode, payload['parameters'])
    if 'result' in payload:
        changes['result'] = WhatIfResult.from_dict(payload['result'] or {})
    s = _service().update_scenario(tid, sid, horizon_months=_horizon(payload), **changes)
    if payload.get('isPrimary') is True:
        s = _service().set_primary(tid, sid)
    return jsonify(s.to_dict())


@app.delete('/tenants/<tid>/scenarios/<sid>')
def delete_scenario(tid: str, sid: str):
    _service().delete_scenario(tid, sid)
    return '', 204


@app.post('/tenants/<tid>/scenarios/<sid>/primary')
def post_primary(tid: str, sid: str):
    return jsonify(_service().set_primary(tid, sid).to_dict())


@app.post('/tenants/<tid>/scenarios/<sid>/favorite')
def post_favorite(tid: str, sid: str):
    return jsonify(_service().toggle_favorite(tid, sid).to_dict())


@app.post('/tenants/<tid>/scenarios/<sid>/refresh')
def post_refresh(tid: str, sid: str):
    return jsonify(_service().refresh_scenario(tid, sid, _horizon(_payload())).to_dict())


@app.get('/tenants/<tid>/scenarios/<sid>/trend.csv')
def get_trend_csv(tid: str, sid: str):
    s = _service().store.get(tid, sid)
    return Response(write_monthly_trend(s.monthly_trend or []), mimetype='text/csv', headers={
        'Content-Disposition': f'attachment; filename="{sid}_trend.csv"'
    })


@app.get('/tenants/<tid>/scenarios/<sid>/report.md')
def get_report(tid: str, sid: str):
    s = _service().store.get(tid, sid)
    return Response(scenario_md(s), mimetype='text/markdown')


# Budget advisor

@app.post('/tenants/<tid>/budget/advice')
def post_budget_advice(tid: str):
    payload = _payload()
    total = as_float(payload.get('totalBudget'), default=-1.0)
    if total < 0:
        raise ValidationError('totalBudget must be a non-negative number')
    channels = None
    if payload.get('channels') is not None:
        if not isinstance(payload['channels'], list):
            raise ValidationError('channels must be a list')
        channels = [
            ChannelPerformance(
                key=str(c.get('key') or c.get('name') or ''),
                revenue=as_float(c.get('revenue')),
                channel_cost=as_float(c.get('channelCost')),
                gross_profit=as_float(c.get('grossProfit')),
                growth_pct=as_float(c.get('growth')),
            )
            for c in payload['channels']
            if isinstance(c, dict)
        ]
    advice = _service().budget_advice(
        tid, total, channels=channels, max_shift_pct=as_float(payload.get('maxShiftPct'), default=20.0)
    )
    return jsonify(advice.to_dict())


if __name__ == '__main__':
    configure_logging()
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', '8000')))
