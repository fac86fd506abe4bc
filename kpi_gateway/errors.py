"""
Error taxonomy and the Flask error handlers that map it onto JSON envelopes.

Handlers are registered once by the app factory, so route functions raise
instead of catching.
"""

import logging
from typing import Optional

from flask import Flask, jsonify, make_response, request
from google.api_core import exceptions as gexc
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    status_code = 500

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def to_dict(self) -> dict:
        body = {"ok": False, "error": self.message}
        if self.hint:
            body["hint"] = self.hint
        return body


class InvalidParameter(GatewayError):
    """Client supplied a missing, malformed or out-of-range parameter."""

    status_code = 400


class UpstreamError(GatewayError):
    """The warehouse or the text model rejected or failed the call."""

    status_code = 500


class QueryRejected(GatewayError):
    """A built statement referenced something outside the fact tables."""

    status_code = 500


# ----------------------------------------------------------------
# BigQuery error hints
# ----------------------------------------------------------------
_BQ_HINTS = (
    (gexc.Forbidden, "Grant the service account roles/bigquery.jobUser and roles/bigquery.dataViewer."),
    (gexc.NotFound, "Check PROJECT_ID, BQ_DATASET, the BQ_TABLE_* overrides and BQ_LOCATION."),
    (gexc.BadRequest, "The query was rejected by BigQuery; check the fact table schema."),
)


def bigquery_hint(exc: Exception) -> Optional[str]:
    for exc_type, hint in _BQ_HINTS:
        if isinstance(exc, exc_type):
            return hint
    return None


def _upstream_message(exc: Exception) -> str:
    # GoogleAPICallError carries the server message separately from the code
    return getattr(exc, "message", None) or str(exc)


def _json_error(body: dict, status: int):
    return make_response(jsonify(body), status)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(GatewayError)
    def _gateway_error(e: GatewayError):
        if e.status_code >= 500:
            logger.error("%s on %s %s: %s", type(e).__name__, request.method, request.path, e.message)
        return _json_error(e.to_dict(), e.status_code)

    @app.errorhandler(gexc.GoogleAPIError)
    def _bigquery_error(e: gexc.GoogleAPIError):
        logger.exception("BigQuery call failed on %s %s", request.method, request.path)
        body = {"ok": False, "error": _upstream_message(e)}
        hint = bigquery_hint(e)
        if hint:
            body["hint"] = hint
        return _json_error(body, 500)

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        if e.code is not None and e.code < 400:
            return e  # routing redirects (trailing slash)
        body = {"ok": False, "error": e.name, "method": request.method, "path": request.path}
        return _json_error(body, e.code or 500)

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        logger.exception("Error handling %s %s", request.method, request.path)
        return _json_error({"ok": False, "error": str(e) or type(e).__name__}, 500)
