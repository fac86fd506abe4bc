"""
Query-string normalization: tenant label and day window.
"""

from dataclasses import dataclass
from typing import Mapping, Optional

from .config import LENIENT, STRICT, Settings
from .errors import InvalidParameter

MIN_DAYS = 1
MAX_DAYS = 365


@dataclass(frozen=True)
class RequestContext:
    client_id: str
    days: int


def normalize_client_id(raw: Optional[str], default: str) -> str:
    value = (raw or "").strip()
    return value or default


def _parse_int(raw: str) -> Optional[int]:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def normalize_days(raw: Optional[str], policy: str, default: int = 30, name: str = "days") -> int:
    """
    strict: reject anything unparsable or outside [MIN_DAYS, MAX_DAYS].
    lenient: unparsable -> default, out of range -> clamped.
    A missing or blank value is the default under both policies.
    """
    text = (raw or "").strip()
    if not text:
        return default

    value = _parse_int(text)
    if policy == STRICT:
        if value is None or not MIN_DAYS <= value <= MAX_DAYS:
            raise InvalidParameter(
                f"'{name}' must be an integer between {MIN_DAYS} and {MAX_DAYS}, got {text!r}"
            )
        return value

    if policy != LENIENT:
        raise ValueError(f"Unknown day-window policy: {policy!r}")
    if value is None:
        return default
    return max(MIN_DAYS, min(MAX_DAYS, value))


def request_context(args: Mapping[str, str], settings: Settings, route: str,
                    client_key: str = "client_id") -> RequestContext:
    return RequestContext(
        client_id=normalize_client_id(args.get(client_key), settings.default_client_id),
        days=normalize_days(args.get("days"), settings.policy_for(route), settings.default_days),
    )
