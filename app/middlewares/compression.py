from __future__ import annotations

import gzip

from flask import Flask, request


def _gzip_json_response(response, *, min_size: int, level: int):
    if "gzip" not in request.headers.get("Accept-Encoding", "").lower():
        return response
    if (
        not 200 <= response.status_code < 300
        or response.direct_passthrough
        or "Content-Encoding" in response.headers
        or "application/json" not in response.headers.get("Content-Type", "").lower()
    ):
        return response

    body = response.get_data()
    if len(body) < min_size:
        return response

    packed = gzip.compress(body, compresslevel=level)
    if len(packed) >= len(body):
        return response

    response.set_data(packed)
    response.headers["Content-Encoding"] = "gzip"
    response.headers["Content-Length"] = str(len(packed))
    response.headers.add("Vary", "Accept-Encoding")
    return response


def init_compression(app: Flask) -> None:
    """Gzips successful JSON responses of at least COMPRESSION_MIN_SIZE bytes."""
    cfg = app.config["CFG"]
    if not cfg.COMPRESSION_ENABLED:
        return

    @app.after_request
    def _compress(response):
        return _gzip_json_response(response, min_size=cfg.COMPRESSION_MIN_SIZE, level=cfg.COMPRESSION_LEVEL)
