from __future__ import annotations

from flask import Flask


_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    # API payloads carry personal data; never let intermediaries keep them.
    "Cache-Control": "no-store",
}


def init_security_headers(app: Flask) -> None:
    @app.after_request
    def _security_headers(resp):
        for name, value in _HEADERS.items():
            resp.headers.setdefault(name, value)
        return resp
