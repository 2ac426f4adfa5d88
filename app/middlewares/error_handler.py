from __future__ import annotations

import logging

from flask import Flask, g, request
from werkzeug.exceptions import HTTPException

from utils import ApiError, err


log = logging.getLogger("api")


def init_error_handlers(app: Flask) -> None:
    """Keeps every failure, including routing errors, in the JSON error envelope."""

    @app.errorhandler(404)
    def _not_found(_e):
        return err("NOT_FOUND", f"Unknown endpoint: {request.path}", http_status=404)

    @app.errorhandler(405)
    def _method_not_allowed(_e):
        return err("BAD_REQUEST", f"Method {request.method} not allowed for {request.path}", http_status=405)

    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        return err(e.code, e.message, http_status=e.http_status)

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        code = "BAD_REQUEST" if (e.code or 500) < 500 else "INTERNAL"
        return err(code, e.description or e.name, http_status=e.code or 500)

    @app.errorhandler(Exception)
    def _unhandled(_e):
        request_id = str(getattr(g, "request_id", "") or "")
        log.exception("request_id=%s unhandled error path=%s", request_id, request.path)
        msg = f"Unexpected error (requestId: {request_id})" if request_id else "Unexpected error"
        return err("INTERNAL", msg, http_status=500)
