"""
Story Kernel - regulated requirement lifecycle

A closed-state-machine kernel for requirement ("story") records with:
- Role-guarded status transitions from an immutable policy table
- Append-only approval ledger (the regulatory audit trail)
- Append-only version snapshots for human-readable history
- Optimistic concurrency on every version bump
"""

__version__ = "0.1.0"
