from __future__ import annotations

import os
import re

from flask import Flask, g, request

from utils import now_monotonic


_INBOUND_ID = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


def init_request_id(app: Flask) -> None:
    """Tags every request with `g.request_id` (echoed as X-Request-ID) and a start timestamp."""

    @app.before_request
    def _assign_request_id():
        inbound = str(request.headers.get("X-Request-ID") or "").strip()
        g.request_id = inbound if _INBOUND_ID.match(inbound) else os.urandom(8).hex()
        g.start_ts = now_monotonic()

    @app.after_request
    def _echo_request_id(resp):
        rid = str(getattr(g, "request_id", "") or "")
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp
