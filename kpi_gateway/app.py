"""
Flask app factory: health/echo, BigQuery KPI routes and Gemini insights.

Routes:
- GET  /                  liveness + version
- GET  /healthz, /__health
- POST /echo              {"received": <body>}
- GET  /bq-test           connectivity check
- GET  /kpis              totals + conversion ratios
- GET  /kpis/series       per-day KPI rows
- GET  /funnel            totals, win rate, stages, per-day rows
- GET  /data-health       data-quality rows (capped)
- GET  /metrics           KPI totals for a tenant_id
- GET  /insights          Gemini text for a tenant_id
"""

import logging
from typing import Optional

from flask import Flask, jsonify, make_response, request

from .config import Settings
from .cors import init_cors
from .errors import register_error_handlers
from .insights import InsightClient
from .params import normalize_client_id, request_context
from .warehouse import Warehouse

logger = logging.getLogger(__name__)

VERSION_HEADER = "X-App-Version"


def create_app(settings: Optional[Settings] = None,
               warehouse: Optional[Warehouse] = None,
               insights: Optional[InsightClient] = None) -> Flask:
    settings = settings or Settings.from_env()
    warehouse = warehouse or Warehouse(settings)
    insights = insights or InsightClient(settings)

    app = Flask(__name__)
    app.json.sort_keys = False
    init_cors(app, settings.allowed_origins)
    register_error_handlers(app)
    register_routes(app, settings, warehouse, insights)

    logger.info(
        "KPI gateway configured: project=%s dataset=%s origins=%s",
        settings.project_id, settings.dataset, ",".join(settings.allowed_origins),
    )
    return app


def register_routes(app: Flask, settings: Settings, warehouse: Warehouse, insights: InsightClient) -> None:

    def _versioned(payload):
        resp = make_response(payload)
        if settings.version:
            resp.headers[VERSION_HEADER] = settings.version
        return resp

    def _with_version(body: dict) -> dict:
        if settings.version:
            body["version"] = settings.version
        return body

    # ---------------- health / echo ----------------

    @app.get("/")
    def index():
        return _versioned(jsonify(_with_version({"ok": True, "message": "KPI gateway online"})))

    @app.get("/healthz")
    def healthz():
        return _versioned("ok")

    @app.get("/__health")
    def health():
        return _versioned(jsonify(_with_version({"ok": True})))

    @app.post("/echo")
    def echo():
        return jsonify({"received": request.get_json(silent=True)})

    # ---------------- warehouse ----------------

    @app.get("/bq-test")
    def bq_test():
        return jsonify({"ok": True, "rows": warehouse.bq_test()})

    @app.get("/kpis")
    def kpis():
        ctx = request_context(request.args, settings, "kpis")
        return jsonify({"ok": True, "client_id": ctx.client_id, "days": ctx.days,
                        "data": warehouse.kpi_totals(ctx)})

    @app.get("/kpis/series")
    def kpis_series():
        ctx = request_context(request.args, settings, "kpis_series")
        return jsonify({"ok": True, "client_id": ctx.client_id, "days": ctx.days,
                        "rows": warehouse.kpi_series(ctx)})

    @app.get("/funnel")
    def funnel():
        ctx = request_context(request.args, settings, "funnel")
        result = warehouse.funnel(ctx)
        return jsonify({"ok": True, "client_id": ctx.client_id, "days": ctx.days, **result})

    @app.get("/data-health")
    def data_health():
        ctx = request_context(request.args, settings, "data_health")
        return jsonify({"ok": True, "client_id": ctx.client_id, "days": ctx.days,
                        "rows": warehouse.data_health(ctx)})

    # ---------------- tenant routes ----------------

    @app.get("/metrics")
    def metrics():
        ctx = request_context(request.args, settings, "metrics", client_key="tenant_id")
        return jsonify({"ok": True, "tenant_id": ctx.client_id, "days": ctx.days,
                        "result": warehouse.kpi_totals(ctx)})

    @app.get("/insights")
    def tenant_insights():
        tenant_id = normalize_client_id(request.args.get("tenant_id"), settings.default_client_id)
        return jsonify({"ok": True, "tenant_id": tenant_id,
                        "insight": insights.tenant_insight(tenant_id)})
