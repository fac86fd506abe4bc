"""
BigQuery access for the KPI, funnel and data-health routes.

Each operation builds one or two fixed templates, submits them, waits for the
rows and coerces numeric fields so the JSON never carries null/NaN/Infinity.
Nothing here catches BigQuery errors: they propagate to the app's error
handlers, one attempt per request.
"""

import datetime
import logging
import math
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from google.cloud import bigquery

from .config import Settings
from .params import RequestContext
from .queries import BuiltQuery, build_query

logger = logging.getLogger(__name__)

KPI_FIELDS = ("leads", "mql", "sql", "deals_won", "revenue")
FUNNEL_FIELDS = ("leads", "mql", "sql", "deals_won")
DATA_HEALTH_NUMERIC = ("row_count", "null_rate", "duplicate_rate", "freshness_hours")

FUNNEL_STAGES = (
    ("leads", "Leads"),
    ("mql", "Marketing qualified"),
    ("sql", "Sales qualified"),
    ("deals_won", "Deals won"),
)


# ----------------------------------------------------------------
# Numeric helpers
# ----------------------------------------------------------------
def to_number(value: Any):
    """Coerce an engine value to int/float; None, garbage and non-finite become 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        return int(value) if value.is_integer() else value
    return 0


def safe_div(numerator: Any, denominator: Any) -> float:
    num = to_number(numerator)
    den = to_number(denominator)
    if not den:
        return 0.0
    result = num / den
    return result if math.isfinite(result) else 0.0


def _json_value(value: Any):
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return to_number(value)
    return value


def coerce_row(row: Dict[str, Any], numeric_fields: Iterable[str]) -> Dict[str, Any]:
    out = {k: _json_value(v) for k, v in row.items()}
    for name in numeric_fields:
        out[name] = to_number(row.get(name))
    return out


def kpi_ratios(totals: Dict[str, Any]) -> Dict[str, float]:
    return {
        "cr_lead_to_mql": safe_div(totals.get("mql"), totals.get("leads")),
        "cr_mql_to_sql": safe_div(totals.get("sql"), totals.get("mql")),
        "cr_sql_to_won": safe_div(totals.get("deals_won"), totals.get("sql")),
    }


def funnel_stages(totals: Dict[str, Any]) -> List[Dict[str, Any]]:
    stages = []
    previous = None
    for key, label in FUNNEL_STAGES:
        value = to_number(totals.get(key))
        rate = 1.0 if previous is None else safe_div(value, previous)
        stages.append({"key": key, "label": label, "value": value, "rate": rate})
        previous = value
    return stages


# ----------------------------------------------------------------
# Warehouse
# ----------------------------------------------------------------
class Warehouse:
    def __init__(self, settings: Settings, client: Optional[bigquery.Client] = None):
        self.settings = settings
        self._client = client

    @property
    def client(self) -> bigquery.Client:
        if self._client is None:
            self._client = bigquery.Client(project=self.settings.project_id)
        return self._client

    def submit(self, query: BuiltQuery) -> bigquery.QueryJob:
        logger.info("Submitting %s query (%d params)", query.name, len(query.params))
        kwargs = {"job_config": bigquery.QueryJobConfig(query_parameters=query.params)}
        if self.settings.bq_location:
            kwargs["location"] = self.settings.bq_location
        return self.client.query(query.sql, **kwargs)

    @staticmethod
    def fetch(job, max_results: Optional[int] = None) -> List[Dict[str, Any]]:
        rows = job.result(max_results=max_results) if max_results else job.result()
        return [dict(row) for row in rows]

    def run(self, query: BuiltQuery, max_results: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.fetch(self.submit(query), max_results)

    # ---- operations ------------------------------------------------

    def bq_test(self) -> List[Dict[str, Any]]:
        rows = self.run(build_query("bq_test", self.settings))
        return [{k: _json_value(v) for k, v in r.items()} for r in rows]

    def kpi_totals(self, ctx: RequestContext) -> Dict[str, Any]:
        rows = self.run(build_query("kpi_totals", self.settings, ctx))
        totals = coerce_row(rows[0] if rows else {}, KPI_FIELDS)
        totals.update(kpi_ratios(totals))
        return totals

    def kpi_series(self, ctx: RequestContext) -> List[Dict[str, Any]]:
        rows = self.run(build_query("kpi_series", self.settings, ctx))
        return [coerce_row(r, KPI_FIELDS) for r in rows]

    def funnel(self, ctx: RequestContext) -> Dict[str, Any]:
        # Both jobs are submitted before either result is awaited
        totals_job = self.submit(build_query("funnel_totals", self.settings, ctx))
        series_job = self.submit(build_query("funnel_series", self.settings, ctx))
        totals_rows = self.fetch(totals_job)
        series_rows = self.fetch(series_job)

        totals = coerce_row(totals_rows[0] if totals_rows else {}, FUNNEL_FIELDS)
        totals["win_rate"] = safe_div(totals["deals_won"], totals["sql"])
        return {
            "data": totals,
            "funnel": funnel_stages(totals),
            "rows": [coerce_row(r, FUNNEL_FIELDS) for r in series_rows],
        }

    def data_health(self, ctx: RequestContext) -> List[Dict[str, Any]]:
        cap = self.settings.max_data_health_rows
        rows = self.run(build_query("data_health", self.settings, ctx), max_results=cap)
        return [coerce_row(r, DATA_HEALTH_NUMERIC) for r in rows[:cap]]
