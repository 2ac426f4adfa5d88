"""
Celery app for out-of-request work (email delivery).

Usage:
    celery -A app.tasks.celery_app worker --loglevel=INFO
"""
from __future__ import annotations

import os

from celery import Celery


def make_celery() -> Celery:
    """
    Celery app on the Redis broker.

    Environment variables:
        REDIS_URL: broker URL (default: redis://localhost:6379/0)
        CELERY_RESULT_BACKEND: optional separate result backend
        CELERY_CONCURRENCY: worker processes (default: 4)
    """
    redis_url = os.getenv("REDIS_URL", "") or "redis://localhost:6379/0"
    result_backend = os.getenv("CELERY_RESULT_BACKEND", "") or redis_url

    app = Celery(
        "sme_directory",
        broker=redis_url,
        backend=result_backend,
        include=["app.tasks.notification_tasks"],
    )

    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        # Delivery results are not read back.
        task_ignore_result=True,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=int(os.getenv("CELERY_CONCURRENCY", "4")),
        task_default_rate_limit="100/m",
        task_default_retry_delay=60,
        task_max_retries=3,
    )

    return app


celery_app = make_celery()
