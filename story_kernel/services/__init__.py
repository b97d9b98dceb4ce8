"""Kernel write services: ledgers and story lifecycle operations."""

from story_kernel.services.approval_ledger import ApprovalLedger
from story_kernel.services.story_service import StoryService, generate_story_id
from story_kernel.services.version_snapshotter import VersionSnapshotter, snapshot_of

__all__ = [
    "ApprovalLedger",
    "StoryService",
    "VersionSnapshotter",
    "generate_story_id",
    "snapshot_of",
]
