from __future__ import annotations

import logging

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

from app.middlewares.compression import init_compression
from app.middlewares.error_handler import init_error_handlers
from app.middlewares.request_id import init_request_id
from app.middlewares.security_headers import init_security_headers
from app.routes.api import api_bp
from app.routes.core import core_bp
from app.seed import run_seed
from config import Config
from db import Base, SessionLocal, init_engine
from utils import SimpleRateLimiter


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app() -> Flask:
    load_dotenv()
    cfg = Config()
    cfg.validate()
    _configure_logging(cfg.LOG_LEVEL)

    engine = init_engine(cfg.DATABASE_URL)
    import models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(bind=engine)

    app = Flask(__name__)
    app.config["CFG"] = cfg
    app.json.sort_keys = False
    app.extensions["rate_limiter"] = SimpleRateLimiter()

    CORS(
        app,
        origins=cfg.ALLOWED_ORIGINS,
        supports_credentials=False,
        allow_headers=["Content-Type", "Authorization", "X-Session-Token", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        max_age=3600,
    )

    init_request_id(app)
    init_security_headers(app)
    init_compression(app)
    init_error_handlers(app)

    app.register_blueprint(core_bp)
    app.register_blueprint(api_bp)

    db0 = SessionLocal()
    try:
        run_seed(db0, cfg)
        db0.commit()
    except Exception:
        db0.rollback()
        raise
    finally:
        db0.close()

    logging.getLogger("api").info("app ready env=%s version=%s", cfg.APP_ENV, cfg.APP_VERSION)
    return app
