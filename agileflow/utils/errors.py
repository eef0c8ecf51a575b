"""JSON error bodies shared by middleware, blueprints and error handlers.

Every error response has the shape::

    {"error": "<message>", "code": "ERR_...", "details": {...}}   # details optional

Domain exceptions carry their own code and status (see
``agileflow.core.exceptions``) and go through ``exception_response``;
middleware that answers before a service runs calls ``api_error`` directly.
"""

from __future__ import annotations

from flask import jsonify

from agileflow.core.exceptions import AgileFlowError


class E:
    """Error codes used outside the exception hierarchy."""

    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    RATE_LIMITED = "ERR_RATE_LIMITED"
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


_STATUS = {
    E.VALIDATION_INVALID: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def error_body(code: str, message: str, details: dict | None = None) -> dict:
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return body


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(response, status)`` for ``code``; unknown codes default to 400."""
    return jsonify(error_body(code, message, details)), status or _STATUS.get(code, 400)


def exception_response(exc: AgileFlowError):
    return api_error(exc.code, exc.message, status=exc.status_code, details=exc.details or None)
