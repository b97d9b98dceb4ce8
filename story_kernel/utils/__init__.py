"""Utility functions for the story kernel."""

from story_kernel.utils.hashing import canonicalize_json, hash_approval_record, hash_payload, to_json_safe

__all__ = [
    "canonicalize_json",
    "hash_approval_record",
    "hash_payload",
    "to_json_safe",
]
