"""
Process-wide configuration, read once from the environment at startup.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

STRICT = "strict"
LENIENT = "lenient"
DAYS_POLICIES = (STRICT, LENIENT)

# Route -> day-window policy when DAYS_POLICY is not set
DEFAULT_ROUTE_POLICIES: Dict[str, str] = {
    "kpis": LENIENT,
    "kpis_series": LENIENT,
    "metrics": LENIENT,
    "funnel": STRICT,
    "data_health": STRICT,
}

# Project ids may contain dashes; dataset and table names may not.
_PROJECT_RE = re.compile(r"^[a-z][a-z0-9\-]{4,28}[a-z0-9]$")
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,1023}$")


def _split_csv(raw: str) -> Tuple[str, ...]:
    return tuple(o.strip() for o in raw.split(",") if o.strip())


def _check_identifier(kind: str, value: str, pattern=_NAME_RE) -> str:
    if not pattern.match(value or ""):
        raise ValueError(f"Invalid {kind} identifier: {value!r}")
    return value


@dataclass(frozen=True)
class Settings:
    project_id: str = "looker-viz-484818"
    dataset: str = "ussouth1"
    table_kpis: str = "fact_kpis_daily"
    table_funnel: str = "fact_funnel_daily"
    table_data_health: str = "fact_data_health_daily"
    bq_location: str = ""
    allowed_origins: Tuple[str, ...] = ("http://localhost:5173", "http://localhost:3000")
    port: int = 8080
    vertex_model: str = "gemini-2.5-flash"
    vertex_location: str = "us-central1"
    default_client_id: str = "demo"
    default_days: int = 30
    days_policy: str = ""  # "", strict or lenient
    max_data_health_rows: int = 500
    version: str = ""
    route_policies: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ROUTE_POLICIES))

    def __post_init__(self):
        _check_identifier("project", self.project_id, _PROJECT_RE)
        _check_identifier("dataset", self.dataset)
        for table in self.fact_tables:
            _check_identifier("table", table)
        if self.days_policy and self.days_policy not in DAYS_POLICIES:
            raise ValueError(f"DAYS_POLICY must be one of {DAYS_POLICIES}, got {self.days_policy!r}")
        if self.max_data_health_rows < 1:
            raise ValueError("MAX_DATA_HEALTH_ROWS must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        defaults = cls()
        origins = env.get("ALLOWED_ORIGINS")
        return cls(
            project_id=env.get("PROJECT_ID") or env.get("GOOGLE_CLOUD_PROJECT") or defaults.project_id,
            dataset=env.get("BQ_DATASET", defaults.dataset),
            table_kpis=env.get("BQ_TABLE_KPIS", defaults.table_kpis),
            table_funnel=env.get("BQ_TABLE_FUNNEL", defaults.table_funnel),
            table_data_health=env.get("BQ_TABLE_DATA_HEALTH", defaults.table_data_health),
            bq_location=env.get("BQ_LOCATION", ""),
            allowed_origins=_split_csv(origins) if origins is not None else defaults.allowed_origins,
            port=int(env.get("PORT", defaults.port)),
            vertex_model=env.get("VERTEX_AI_MODEL", defaults.vertex_model),
            vertex_location=env.get("VERTEX_AI_LOCATION", defaults.vertex_location),
            default_client_id=env.get("DEFAULT_CLIENT_ID", "").strip() or defaults.default_client_id,
            days_policy=env.get("DAYS_POLICY", "").strip().lower(),
            max_data_health_rows=int(env.get("MAX_DATA_HEALTH_ROWS", defaults.max_data_health_rows)),
            version=env.get("APP_VERSION") or env.get("K_REVISION", ""),
        )

    def table_id(self, table: str) -> str:
        """Fully qualified `project.dataset.table` reference, backtick-quoted."""
        return f"`{self.project_id}.{self.dataset}.{table}`"

    @property
    def fact_tables(self) -> Tuple[str, ...]:
        return (self.table_kpis, self.table_funnel, self.table_data_health)

    def policy_for(self, route: str) -> str:
        if self.days_policy:
            return self.days_policy
        return self.route_policies.get(route, LENIENT)
