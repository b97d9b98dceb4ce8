"""
story_services.email -- Email channel and status-change message rendering.

``EmailChannel`` is the delivery seam the notifier depends on.
``ResendEmailChannel`` posts to the Resend HTTP API with httpx; when no
API key is configured it reports every send as "Email service not
configured" rather than raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Protocol

import httpx

from story_config.schema import EmailSettings
from story_kernel.logging_config import get_logger

logger = get_logger("services.email")

NOT_CONFIGURED = "Email service not configured"
SEND_FAILED = "Failed to send email"


@dataclass(frozen=True)
class EmailMessage:
    to: tuple[str, ...]
    subject: str
    html: str
    text: str = ""


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: str | None = None


class EmailChannel(Protocol):
    def send(self, message: EmailMessage) -> DeliveryResult:
        ...


class ResendEmailChannel:
    """EmailChannel over the Resend REST API."""

    def __init__(
        self,
        settings: EmailSettings,
        client: httpx.Client | None = None,
    ) -> None:
        self._settings = settings
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._settings.api_key)

    def send(self, message: EmailMessage) -> DeliveryResult:
        if not self.configured:
            logger.warning(
                "email_not_configured",
                extra={"api_key_env": self._settings.api_key_env},
            )
            return DeliveryResult(success=False, error=NOT_CONFIGURED)

        payload = {
            "from": self._settings.from_address,
            "to": list(message.to),
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        headers = {"Authorization": f"Bearer {self._settings.api_key}"}

        try:
            if self._client is not None:
                response = self._client.post(
                    self._settings.api_url, json=payload, headers=headers,
                )
            else:
                with httpx.Client(timeout=self._settings.timeout_seconds) as client:
                    response = client.post(
                        self._settings.api_url, json=payload, headers=headers,
                    )
        except httpx.HTTPError as exc:
            logger.error(
                "email_send_error",
                extra={"error": str(exc), "subject": message.subject},
            )
            return DeliveryResult(success=False, error=SEND_FAILED)

        if response.is_success:
            return DeliveryResult(success=True)

        error = _error_message(response)
        logger.error(
            "email_send_rejected",
            extra={"status_code": response.status_code, "error": error},
        )
        return DeliveryResult(success=False, error=error)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def render_status_change_email(
    *,
    story_id: str,
    story_title: str,
    previous_status: str,
    new_status: str,
    changed_by: str,
    dashboard_url: str,
    notes: str | None = None,
    summary: str | None = None,
    heading: str = "Story Status Update",
) -> RenderedEmail:
    """Subject, HTML and plain-text bodies for a status-change notice."""
    story_url = f"{dashboard_url}/stories/{story_id}"
    prefs_url = f"{dashboard_url}/settings/notifications"
    subject = f"[{story_id}] Status changed to {new_status}"
    intro = summary or "A story you're tracking has been updated:"

    notes_html = ""
    if notes:
        notes_html = (
            '<div style="background: #fef3c7; padding: 12px; border-radius: 6px; '
            'margin: 16px 0; border-left: 4px solid #F9BC15;">'
            f"<p style=\"margin: 0;\"><strong>Notes:</strong> {escape(notes)}</p>"
            "</div>"
        )

    html = (
        "<!DOCTYPE html>\n"
        '<html><head><meta charset="utf-8"><title>Status Change Notification</title></head>\n'
        '<body style="font-family: sans-serif; line-height: 1.6; color: #34353F; '
        'max-width: 600px; margin: 0 auto; padding: 20px;">\n'
        f'<h1 style="font-size: 20px;">{escape(heading)}</h1>\n'
        f"<p>{escape(intro)}</p>\n"
        f'<p style="font-family: monospace; color: #6b7280;">{escape(story_id)}</p>\n'
        f"<h2>{escape(story_title)}</h2>\n"
        f"<p>{escape(previous_status)} &rarr; <strong>{escape(new_status)}</strong></p>\n"
        f"<p>Changed by: {escape(changed_by)}</p>\n"
        f"{notes_html}\n"
        f'<p><a href="{escape(story_url)}">View Story</a></p>\n'
        '<hr><p style="font-size: 12px; color: #6b7280;">'
        "You're receiving this because you have notifications enabled for status changes. "
        f'<a href="{escape(prefs_url)}">Manage notification preferences</a></p>\n'
        "</body></html>\n"
    )

    text_lines = [
        heading,
        intro,
        "",
        f"{story_id}: {story_title}",
        "",
        f"Status changed: {previous_status} -> {new_status}",
        f"Changed by: {changed_by}",
    ]
    if notes:
        text_lines += ["", f"Notes: {notes}"]
    text_lines += [
        "",
        f"View story: {story_url}",
        "",
        "---",
        "You're receiving this because you have notifications enabled for status changes.",
        f"Manage preferences: {prefs_url}",
    ]

    return RenderedEmail(subject=subject, html=html, text="\n".join(text_lines))
