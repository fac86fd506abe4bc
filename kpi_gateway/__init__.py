"""KPI gateway: BigQuery-backed KPI routes and Gemini insights behind a CORS allow-list."""

from .app import create_app
from .config import Settings

__all__ = ["create_app", "Settings"]
