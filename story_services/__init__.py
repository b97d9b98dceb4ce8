"""
story_services -- Orchestration around the story kernel.

The transition executor, caller identity and user directory adapters,
the post-commit side-effect runners, and status-change notification
delivery.
"""

from story_services.email import (
    DeliveryResult,
    EmailChannel,
    EmailMessage,
    ResendEmailChannel,
    render_status_change_email,
)
from story_services.identity import (
    DirectoryUser,
    IdentityProvider,
    SqlUserDirectory,
    StaticIdentityProvider,
    UserDirectory,
)
from story_services.notification_dispatcher import (
    DeliveryReport,
    NotificationDispatcher,
    NullNotificationDispatcher,
    StatusChangeNotifier,
)
from story_services.side_effects import (
    InlineSideEffectRunner,
    SideEffectOutcome,
    SideEffectRunner,
    ThreadedSideEffectRunner,
)
from story_services.transition_executor import TransitionExecutor

__all__ = [
    "DeliveryReport",
    "DeliveryResult",
    "DirectoryUser",
    "EmailChannel",
    "EmailMessage",
    "IdentityProvider",
    "InlineSideEffectRunner",
    "NotificationDispatcher",
    "NullNotificationDispatcher",
    "ResendEmailChannel",
    "SideEffectOutcome",
    "SideEffectRunner",
    "SqlUserDirectory",
    "StaticIdentityProvider",
    "StatusChangeNotifier",
    "ThreadedSideEffectRunner",
    "TransitionExecutor",
    "UserDirectory",
    "render_status_change_email",
]
