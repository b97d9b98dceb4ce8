"""ORM models for the story kernel."""

from story_kernel.models.approval import StoryApprovalModel
from story_kernel.models.story import CONTENT_FIELDS, LOCK_FIELDS, StoryModel
from story_kernel.models.user import (
    DEFAULT_NOTIFICATION_PREFERENCES,
    UserModel,
    UserStatus,
)
from story_kernel.models.version import StoryVersionModel

__all__ = [
    "CONTENT_FIELDS",
    "DEFAULT_NOTIFICATION_PREFERENCES",
    "LOCK_FIELDS",
    "StoryApprovalModel",
    "StoryModel",
    "StoryVersionModel",
    "UserModel",
    "UserStatus",
]
