"""
Email delivery jobs published by `services.notification_dispatcher.flush_outbox`.

The job carries only the rendered message; SMTP settings come from the
worker's own environment.
"""
from __future__ import annotations

import logging
import smtplib

from app.tasks import celery_app
from config import Config
from services.email_service import deliver_email


log = logging.getLogger("notifications")


@celery_app.task(
    bind=True,
    autoretry_for=(smtplib.SMTPException, OSError),
    retry_backoff=True,
    retry_jitter=True,
    max_retries=5,
)
def send_notification_email(self, job: dict) -> dict:
    to = str((job or {}).get("to") or "")
    if not to:
        log.warning("task=%s dropped email job without recipient", self.request.id)
        return {"sent": False, "reason": "missing recipient"}

    sent = deliver_email(
        Config(),
        to=to,
        subject=str(job.get("subject") or ""),
        html=str(job.get("html") or ""),
        text=str(job.get("text") or ""),
    )
    log.info("task=%s email to=%s sent=%s attempt=%s", self.request.id, to, sent, self.request.retries + 1)
    return {"sent": bool(sent), "to": to}
