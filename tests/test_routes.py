import datetime

from google.api_core import exceptions as gexc

from kpi_gateway import Settings, create_app
from kpi_gateway.errors import UpstreamError
from kpi_gateway.warehouse import Warehouse
from tests.conftest import FakeBigQuery, StubInsights


# ---------------- health / echo ----------------

def test_index(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True, "message": "KPI gateway online", "version": "rev-test"}
    assert resp.headers["X-App-Version"] == "rev-test"


def test_healthz_plain_text(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.data == b"ok"


def test_dunder_health(client):
    assert client.get("/__health").get_json() == {"ok": True, "version": "rev-test"}


def test_version_omitted_when_unset(bq, insights):
    settings = Settings()
    app = create_app(settings, Warehouse(settings, client=bq), insights)
    resp = app.test_client().get("/__health")
    assert resp.get_json() == {"ok": True}
    assert "X-App-Version" not in resp.headers


def test_echo_returns_body_verbatim(client):
    resp = client.post("/echo", json={"a": 1})
    assert resp.status_code == 200
    assert resp.get_json() == {"received": {"a": 1}}


def test_echo_non_json_body(client):
    resp = client.post("/echo", data="not json", content_type="text/plain")
    assert resp.get_json() == {"received": None}


# ---------------- warehouse routes ----------------

def test_bq_test(client, bq):
    bq.outcomes = [[{"ok": 1, "server_time": datetime.datetime(2025, 3, 1, 12, 0)}]]
    resp = client.get("/bq-test")
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True, "rows": [{"ok": 1, "server_time": "2025-03-01T12:00:00"}]}


def test_kpis_conversion_ratios(client, bq):
    bq.outcomes = [[{"leads": 100, "mql": 25, "sql": 10, "deals_won": 5}]]
    resp = client.get("/kpis?client_id=acme&days=30")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["ok"] is True
    assert body["client_id"] == "acme"
    assert body["days"] == 30
    data = body["data"]
    assert data["cr_lead_to_mql"] == 0.25
    assert data["cr_mql_to_sql"] == 0.4
    assert data["cr_sql_to_won"] == 0.5
    assert data["revenue"] == 0
    assert bq.params() == {"client_id": "acme", "days": 30}


def test_kpis_defaults_and_clamps(client, bq):
    bq.outcomes = [[]]
    body = client.get("/kpis?client_id=%20%20&days=9999").get_json()
    assert body["client_id"] == "demo"
    assert body["days"] == 365
    assert bq.params() == {"client_id": "demo", "days": 365}


def test_kpis_series(client, bq):
    bq.outcomes = [[
        {"date": datetime.date(2025, 1, 1), "leads": 3, "mql": None, "sql": 1, "deals_won": 0, "revenue": 99.5},
        {"date": datetime.date(2025, 1, 2), "leads": 4, "mql": 2, "sql": 1, "deals_won": 1, "revenue": None},
    ]]
    body = client.get("/kpis/series?client_id=acme&days=abc").get_json()
    assert body["days"] == 30
    assert [r["date"] for r in body["rows"]] == ["2025-01-01", "2025-01-02"]
    assert body["rows"][0]["mql"] == 0
    assert body["rows"][1]["revenue"] == 0


def test_funnel(client, bq):
    bq.outcomes = [
        [{"leads": 100, "mql": 50, "sql": 20, "deals_won": 5}],
        [{"date": datetime.date(2025, 1, 1), "leads": 100, "mql": 50, "sql": 20, "deals_won": 5}],
    ]
    resp = client.get("/funnel?client_id=acme&days=14")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["data"]["win_rate"] == 0.25
    assert [s["rate"] for s in body["funnel"]] == [1.0, 0.5, 0.4, 0.25]
    assert len(body["rows"]) == 1


def test_funnel_rejects_out_of_range_days(client, bq):
    resp = client.get("/funnel?days=0")
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["ok"] is False
    assert "between 1 and 365" in body["error"]
    assert bq.calls == []


def test_data_health_rejects_unparsable_days(client):
    assert client.get("/data-health?days=thirty").status_code == 400


def test_data_health_never_exceeds_cap(client, bq):
    bq.outcomes = [[{"date": datetime.date(2025, 1, 1), "table_name": f"t{i}", "row_count": 1}
                    for i in range(750)]]
    resp = client.get("/data-health?days=30")
    assert resp.status_code == 200
    assert len(resp.get_json()["rows"]) <= 500


# ---------------- tenant routes ----------------

def test_metrics_uses_tenant_id(client, bq):
    bq.outcomes = [[{"leads": 10, "mql": 5, "sql": 0, "deals_won": 0, "revenue": 0}]]
    body = client.get("/metrics?tenant_id=globex").get_json()
    assert body["ok"] is True
    assert body["tenant_id"] == "globex"
    assert body["result"]["cr_lead_to_mql"] == 0.5
    assert body["result"]["cr_mql_to_sql"] == 0.0


def test_insights(client, insights):
    body = client.get("/insights?tenant_id=globex").get_json()
    assert body == {"ok": True, "tenant_id": "globex", "insight": "Conversion is healthy."}
    assert insights.tenants == ["globex"]


def test_insights_failure_carries_hint(bq):
    settings = Settings()
    failing = StubInsights(error=UpstreamError("Vertex AI error: 403", hint="grant access"))
    client = create_app(settings, Warehouse(settings, client=bq), failing).test_client()
    resp = client.get("/insights?tenant_id=globex")
    assert resp.status_code == 500
    assert resp.get_json() == {"ok": False, "error": "Vertex AI error: 403", "hint": "grant access"}


# ---------------- error mapping ----------------

def test_upstream_error_maps_to_500_and_service_keeps_running(client, bq):
    bq.outcomes = [
        gexc.Forbidden("Access Denied: Table fact_kpis_daily"),
        [{"leads": 1, "mql": 1, "sql": 1, "deals_won": 1}],
    ]
    resp = client.get("/kpis?client_id=acme")
    assert resp.status_code == 500
    body = resp.get_json()
    assert body["ok"] is False
    assert body["error"] == "Access Denied: Table fact_kpis_daily"
    assert "roles/bigquery" in body["hint"]

    follow_up = client.get("/kpis?client_id=acme")
    assert follow_up.status_code == 200
    assert follow_up.get_json()["data"]["cr_sql_to_won"] == 1.0


def test_unexpected_error_maps_to_500(client, bq):
    bq.outcomes = [RuntimeError("query timed out")]
    resp = client.get("/kpis/series")
    assert resp.status_code == 500
    assert resp.get_json() == {"ok": False, "error": "query timed out"}


def test_unknown_route_echoes_method_and_path(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    body = resp.get_json()
    assert body["ok"] is False
    assert body["method"] == "GET"
    assert body["path"] == "/nope"


def test_wrong_method(client):
    resp = client.post("/kpis")
    assert resp.status_code == 405
    assert resp.get_json()["method"] == "POST"


def test_lazy_client_is_not_created_for_health(monkeypatch, insights):
    def _boom(*args, **kwargs):
        raise AssertionError("BigQuery client should not be created")

    monkeypatch.setattr("kpi_gateway.warehouse.bigquery.Client", _boom)
    client = create_app(Settings(), insights=insights).test_client()
    assert client.get("/healthz").status_code == 200
