"""
story_services.notification_dispatcher -- Status-change notification fan-out.

Responsibility:
    Turns a committed ``StatusChangeEvent`` into per-recipient emails:
    looks up the notification rule for the new status, selects eligible
    recipients, renders one message, and delivers it to each recipient
    independently.

Architecture position:
    Services layer.  Invoked by the executor through the side-effect
    runner after commit; its outcome never reaches the transition caller.

Recipient eligibility (all must hold):
    - role is one of the rule's ``notify_roles``;
    - account is active and has an email address;
    - not the user who made the change;
    - ``email_enabled`` and ``status_changes`` preferences are on
      (unset preferences count as on);
    - for program-scoped roles, the story's program is in the user's
      ``assigned_programs``.

Failure modes:
    - A failing recipient is counted and logged; the rest still receive.
    - Directory lookup failures propagate to the side-effect runner, which
      retries them before any message has been sent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from story_config.schema import LifecycleConfig
from story_kernel.domain.dtos import StatusChangeEvent
from story_kernel.logging_config import get_logger
from story_services.email import EmailChannel, EmailMessage, render_status_change_email
from story_services.identity import DirectoryUser, UserDirectory

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class DeliveryReport:
    story_id: str
    eligible: int = 0
    delivered: int = 0
    failed: int = 0


class NotificationDispatcher(Protocol):
    """Best-effort fan-out of a status-change event."""

    def dispatch(self, event: StatusChangeEvent) -> DeliveryReport:
        ...


class NullNotificationDispatcher:
    """Dispatcher that notifies nobody."""

    def dispatch(self, event: StatusChangeEvent) -> DeliveryReport:
        return DeliveryReport(story_id=event.story_id)


class StatusChangeNotifier:
    """NotificationDispatcher that emails role- and program-scoped users."""

    def __init__(
        self,
        config: LifecycleConfig,
        directory: UserDirectory,
        channel: EmailChannel,
    ) -> None:
        self._config = config
        self._directory = directory
        self._channel = channel

    def eligible_recipients(self, event: StatusChangeEvent) -> list[DirectoryUser]:
        rule = self._config.rule_for(event.new_status)
        if not rule.notify_roles:
            return []
        candidates = self._directory.users_with_roles(rule.notify_roles)
        return [u for u in candidates if self._is_eligible(u, event)]

    def _is_eligible(self, user: DirectoryUser, event: StatusChangeEvent) -> bool:
        if not user.active or not user.email:
            return False
        if user.user_id == event.changed_by:
            return False
        if not (user.email_enabled and user.status_changes):
            return False
        if user.role in self._config.program_scoped_roles:
            return event.program_id in user.assigned_programs
        return True

    def dispatch(self, event: StatusChangeEvent) -> DeliveryReport:
        recipients = self.eligible_recipients(event)
        if not recipients:
            logger.debug(
                "notification_no_recipients",
                extra={"story_id": event.story_id, "new_status": event.new_status},
            )
            return DeliveryReport(story_id=event.story_id)

        rule = self._config.rule_for(event.new_status)
        changed_by = self._directory.display_name(event.changed_by) or "Unknown"
        rendered = render_status_change_email(
            story_id=event.story_id,
            story_title=event.story_title,
            previous_status=event.previous_status.value,
            new_status=event.new_status.value,
            changed_by=changed_by,
            dashboard_url=self._config.email.dashboard_url,
            notes=event.notes,
            summary=rule.description or None,
            heading=rule.subject,
        )

        delivered = 0
        failed = 0
        for user in recipients:
            message = EmailMessage(
                to=(user.email,),
                subject=rendered.subject,
                html=rendered.html,
                text=rendered.text,
            )
            try:
                result = self._channel.send(message)
            except Exception:
                failed += 1
                logger.error(
                    "notification_delivery_failed",
                    extra={"story_id": event.story_id, "recipient_id": str(user.user_id)},
                    exc_info=True,
                )
                continue
            if result.success:
                delivered += 1
            else:
                failed += 1
                logger.warning(
                    "notification_delivery_failed",
                    extra={
                        "story_id": event.story_id,
                        "recipient_id": str(user.user_id),
                        "error": result.error,
                    },
                )

        report = DeliveryReport(
            story_id=event.story_id,
            eligible=len(recipients),
            delivered=delivered,
            failed=failed,
        )
        logger.info(
            "notification_dispatched",
            extra={
                "story_id": event.story_id,
                "new_status": event.new_status,
                "eligible": report.eligible,
                "delivered": report.delivered,
                "failed": report.failed,
            },
        )
        return report
