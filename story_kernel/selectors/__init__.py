"""Read-only selectors over stories and their ledgers."""

from story_kernel.selectors.approval_selector import ApprovalSelector
from story_kernel.selectors.story_selector import StorySelector

__all__ = [
    "ApprovalSelector",
    "StorySelector",
]
