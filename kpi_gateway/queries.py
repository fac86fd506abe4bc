"""
Fixed SQL templates keyed by name.

Table identifiers come from Settings (validated at startup) and are the only
thing formatted into the text; client_id and days are always bound as
BigQuery query parameters.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

import sqlglot
from google.cloud import bigquery
from sqlglot import exp
from sqlglot.errors import ParseError

from .config import Settings
from .errors import QueryRejected
from .params import RequestContext

# ----------------------------------------------------------------
# Templates
# ----------------------------------------------------------------
_WINDOW_FILTER = """
WHERE client_id = @client_id
  AND date >= DATE_SUB(CURRENT_DATE(), INTERVAL @days DAY)"""

_KPI_TOTALS = """
SELECT
  COALESCE(SUM(leads), 0) AS leads,
  COALESCE(SUM(mql), 0) AS mql,
  COALESCE(SUM(`sql`), 0) AS `sql`,
  COALESCE(SUM(deals_won), 0) AS deals_won,
  COALESCE(SUM(revenue), 0) AS revenue
FROM {table}""" + _WINDOW_FILTER

_KPI_SERIES = """
SELECT date, leads, mql, `sql`, deals_won, revenue
FROM {table}""" + _WINDOW_FILTER + """
ORDER BY date ASC"""

_FUNNEL_TOTALS = """
SELECT
  COALESCE(SUM(leads), 0) AS leads,
  COALESCE(SUM(mql), 0) AS mql,
  COALESCE(SUM(`sql`), 0) AS `sql`,
  COALESCE(SUM(deals_won), 0) AS deals_won
FROM {table}""" + _WINDOW_FILTER

_FUNNEL_SERIES = """
SELECT date, leads, mql, `sql`, deals_won
FROM {table}""" + _WINDOW_FILTER + """
ORDER BY date ASC"""

_DATA_HEALTH = """
SELECT date, table_name, row_count, null_rate, duplicate_rate, freshness_hours, status
FROM {table}""" + _WINDOW_FILTER + """
ORDER BY date DESC, table_name ASC
LIMIT {limit:d}"""

_BQ_TEST = "SELECT 1 AS ok, CURRENT_TIMESTAMP() AS server_time"


@dataclass(frozen=True)
class QueryTemplate:
    name: str
    sql: str
    table_attr: Optional[str] = None  # Settings attribute naming the fact table
    windowed: bool = True


TEMPLATES: Dict[str, QueryTemplate] = {
    t.name: t
    for t in (
        QueryTemplate("kpi_totals", _KPI_TOTALS, "table_kpis"),
        QueryTemplate("kpi_series", _KPI_SERIES, "table_kpis"),
        QueryTemplate("funnel_totals", _FUNNEL_TOTALS, "table_funnel"),
        QueryTemplate("funnel_series", _FUNNEL_SERIES, "table_funnel"),
        QueryTemplate("data_health", _DATA_HEALTH, "table_data_health"),
        QueryTemplate("bq_test", _BQ_TEST, windowed=False),
    )
}


@dataclass(frozen=True)
class BuiltQuery:
    name: str
    sql: str
    params: List[bigquery.ScalarQueryParameter]


def build_query(name: str, settings: Settings, ctx: Optional[RequestContext] = None) -> BuiltQuery:
    try:
        template = TEMPLATES[name]
    except KeyError:
        raise QueryRejected(f"Unknown query template: {name}")

    params: List[bigquery.ScalarQueryParameter] = []
    if template.table_attr:
        sql = template.sql.format(
            table=settings.table_id(getattr(settings, template.table_attr)),
            limit=settings.max_data_health_rows,
        )
    else:
        sql = template.sql
    if template.windowed:
        if ctx is None:
            raise QueryRejected(f"Template {name} needs a client_id and day window")
        params.append(bigquery.ScalarQueryParameter("client_id", "STRING", ctx.client_id))
        params.append(bigquery.ScalarQueryParameter("days", "INT64", ctx.days))

    sql = sql.strip()
    validate_tables(sql, settings.fact_tables)
    return BuiltQuery(name=name, sql=sql, params=params)


# ----------------------------------------------------------------
# SQL validation (security)
# ----------------------------------------------------------------
def validate_tables(sql: str, allowed_tables) -> None:
    """Raise QueryRejected unless every table referenced is one of the fact tables."""
    allowed = {t.lower() for t in allowed_tables}
    try:
        tree = sqlglot.parse_one(sql, read="bigquery")
    except ParseError as e:
        raise QueryRejected(f"Unparseable SQL: {e}")

    for table in tree.find_all(exp.Table):
        if table.name.lower() not in allowed:
            raise QueryRejected(f"Unauthorized table used: {table.name}")
