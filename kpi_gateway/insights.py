"""
Vertex AI (Gemini) text insights over REST using Application Default Credentials.
"""

import logging
from typing import Any, Dict, Optional

import google.auth
import google.auth.exceptions
import google.auth.transport.requests
import requests

from .config import Settings
from .errors import UpstreamError

logger = logging.getLogger(__name__)

ACCESS_HINT = (
    "Vertex AI call failed. Grant the runtime service account roles/aiplatform.user "
    "and check VERTEX_AI_MODEL / VERTEX_AI_LOCATION."
)

INSIGHT_PROMPT = """
You are a B2B marketing analytics assistant.
Tenant: "{tenant_id}"
Using the tenant's lead, MQL, SQL, won-deal and revenue KPIs, write:
1. Three short observations about funnel health.
2. Two concrete actions to improve conversion.
Rules:
- Plain text, no markdown tables.
- Do NOT generate SQL.
- Keep it under 150 words.
""".strip()


def render_prompt(tenant_id: str) -> str:
    return INSIGHT_PROMPT.format(tenant_id=tenant_id)


def extract_text(payload: Optional[Dict[str, Any]]) -> str:
    """Concatenate the text parts of the first candidate; empty when the shape is absent."""
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    if not isinstance(parts, list):
        return ""
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


class InsightClient:
    def __init__(self, settings: Settings, timeout_sec: int = 60):
        self.settings = settings
        self.timeout_sec = timeout_sec

    def _access_token(self) -> str:
        creds, _ = google.auth.default(scopes=["https://www.googleapis.com/auth/cloud-platform"])
        creds.refresh(google.auth.transport.requests.Request())
        return creds.token

    def endpoint(self) -> str:
        s = self.settings
        host = "aiplatform.googleapis.com" if s.vertex_location == "global" \
            else f"{s.vertex_location}-aiplatform.googleapis.com"
        return (
            f"https://{host}/v1/projects/{s.project_id}"
            f"/locations/{s.vertex_location}/publishers/google/models/{s.vertex_model}:generateContent"
        )

    def generate(self, prompt_text: str) -> str:
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt_text}]}],
            "generation_config": {"temperature": 0.2, "max_output_tokens": 512},
        }
        try:
            headers = {
                "Authorization": f"Bearer {self._access_token()}",
                "Content-Type": "application/json",
            }
            resp = requests.post(self.endpoint(), headers=headers, json=body, timeout=self.timeout_sec)
        except (google.auth.exceptions.GoogleAuthError, requests.RequestException) as e:
            logger.exception("Vertex AI request failed")
            raise UpstreamError(str(e), hint=ACCESS_HINT)

        if not resp.ok:
            logger.error("Vertex AI error: %s %s", resp.status_code, resp.text[:500])
            raise UpstreamError(f"Vertex AI error: {resp.status_code} {resp.text}", hint=ACCESS_HINT)
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        return extract_text(payload)

    def tenant_insight(self, tenant_id: str) -> str:
        return self.generate(render_prompt(tenant_id))
