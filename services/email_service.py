from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Optional

from jinja2 import Environment, select_autoescape


log = logging.getLogger("email")

FOOTER_TEXT = "SME Directory - Learning Hub & Expert Network"

_env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))

_ENDORSEMENT_HTML = _env.from_string(
    """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <style>
    body { font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333; background-color: #f5f5f5; margin: 0; padding: 0; }
    .container { max-width: 600px; margin: 40px auto; background-color: #ffffff; border-radius: 8px; overflow: hidden; }
    .header { background: linear-gradient(135deg, #2563eb 0%, #7c3aed 100%); color: white; padding: 32px 24px; text-align: center; }
    .content { padding: 32px 24px; }
    .endorser { font-weight: 600; color: #2563eb; }
    .skill { font-weight: 600; color: #7c3aed; }
    .comment-box { background-color: #f8fafc; border-left: 4px solid #2563eb; padding: 16px; margin: 20px 0; }
    .button { display: inline-block; background: #2563eb; color: white; text-decoration: none; padding: 14px 28px; border-radius: 6px; }
    .footer { background-color: #f8fafc; padding: 24px; text-align: center; font-size: 14px; color: #64748b; }
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>New Endorsement Received!</h1></div>
    <div class="content">
      <div class="greeting">Hi {{ sme_name }},</div>
      <div class="message">
        <span class="endorser">{{ endorser_name }}</span>{% if endorser_position %} ({{ endorser_position }}){% endif %} just endorsed your skill in <span class="skill">{{ skill_name }}</span>!
      </div>
      {% if comment %}
      <div class="comment-box">
        <div class="comment-label">Comment</div>
        <div class="comment-text">"{{ comment }}"</div>
      </div>
      {% endif %}
      <div style="text-align: center;">
        <a href="{{ profile_url }}" class="button">View Your Profile</a>
      </div>
    </div>
    <div class="footer">
      <div>{{ footer }}</div>
      <div><a href="{{ preferences_url }}">Manage email preferences</a></div>
    </div>
  </div>
</body>
</html>"""
)


def render_endorsement_email(
    *,
    sme_name: str,
    endorser_name: str,
    skill_name: str,
    profile_url: str,
    preferences_url: str,
    endorser_position: Optional[str] = None,
    comment: Optional[str] = None,
) -> tuple[str, str]:
    """Returns (html, text) bodies for an endorsement email."""
    html = _ENDORSEMENT_HTML.render(
        sme_name=sme_name,
        endorser_name=endorser_name,
        endorser_position=endorser_position or "",
        skill_name=skill_name,
        comment=comment or "",
        profile_url=profile_url,
        preferences_url=preferences_url,
        footer=FOOTER_TEXT,
    )

    text = f"Hi {sme_name},\n\n{endorser_name}"
    if endorser_position:
        text += f" ({endorser_position})"
    text += f" just endorsed your skill in {skill_name}!\n\n"
    if comment:
        text += f'Comment: "{comment}"\n\n'
    text += f"View your profile: {profile_url}\n\n"
    text += "---\n"
    text += f"Manage email preferences: {preferences_url}"
    return html, text


def _smtp_settings(cfg: Any) -> dict:
    def pick(key: str, default: Any = "") -> Any:
        return getattr(cfg, key, default)

    return {
        "host": str(pick("SMTP_HOST") or ""),
        "port": int(pick("SMTP_PORT", 25) or 25),
        "secure": bool(pick("SMTP_SECURE", False)),
        "user": str(pick("SMTP_USER") or ""),
        "password": str(pick("SMTP_PASS") or ""),
        "from_email": str(pick("NOTIFICATION_FROM_EMAIL") or "noreply@yourdomain.com"),
    }


def deliver_email(cfg: Any, *, to: str, subject: str, html: str, text: str) -> bool:
    """
    Sends one multipart email. Raises on SMTP failure so callers (the Celery
    task) can retry; returns False when SMTP is not configured.
    """
    s = _smtp_settings(cfg)
    if not s["host"]:
        log.warning("SMTP_HOST not configured, skipping email notification")
        return False

    msg = MIMEMultipart("alternative")
    msg["From"] = s["from_email"]
    msg["To"] = to
    msg["Subject"] = subject
    msg.attach(MIMEText(text, "plain", "utf-8"))
    msg.attach(MIMEText(html, "html", "utf-8"))

    if s["secure"]:
        server = smtplib.SMTP_SSL(s["host"], s["port"], timeout=30)
    else:
        server = smtplib.SMTP(s["host"], s["port"], timeout=30)
    try:
        server.ehlo()
        if s["user"] and s["password"]:
            if not s["secure"] and server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            server.login(s["user"], s["password"])
        server.send_message(msg)
    finally:
        server.quit()

    log.info("Email notification sent to %s", to)
    return True


def send_email_safely(cfg: Any, *, to: str, subject: str, html: str, text: str) -> bool:
    try:
        return deliver_email(cfg, to=to, subject=subject, html=html, text=text)
    except (smtplib.SMTPException, OSError):
        log.exception("Error sending email notification to=%s", to)
        return False
