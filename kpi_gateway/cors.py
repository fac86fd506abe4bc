"""
CORS for browser UIs: allow-listed origin echo plus preflight short-circuit.
"""

from typing import Iterable, Optional

from flask import Flask, Response, make_response, request

ALLOW_METHODS = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
ALLOW_HEADERS = "Content-Type, Authorization"
PREFLIGHT_MAX_AGE = "3600"


def allowed_origin(origin: Optional[str], allow_list: Iterable[str]) -> Optional[str]:
    """Value for Access-Control-Allow-Origin, or None when the origin is not allowed."""
    allow_list = tuple(allow_list)
    if "*" in allow_list:
        return "*"
    if origin and origin in allow_list:
        return origin
    return None


def apply_cors_headers(resp: Response, origin: Optional[str], allow_list: Iterable[str]) -> Response:
    echoed = allowed_origin(origin, allow_list)
    if echoed:
        resp.headers["Access-Control-Allow-Origin"] = echoed
    # Sent regardless of origin match, for tools that ignore the origin gate
    resp.headers["Access-Control-Allow-Methods"] = ALLOW_METHODS
    resp.headers["Access-Control-Allow-Headers"] = ALLOW_HEADERS
    resp.vary.add("Origin")
    return resp


def init_cors(app: Flask, allow_list: Iterable[str]) -> None:
    allow_list = tuple(allow_list)

    @app.before_request
    def _preflight():
        if request.method == "OPTIONS":
            resp = make_response("", 204)
            resp.headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
            return resp
        return None

    @app.after_request
    def _cors(resp: Response):
        return apply_cors_headers(resp, request.headers.get("Origin"), allow_list)
