"""
SQLAlchemy models for the job mail tracker.

This package contains:
- MailMessage: Fetched Gmail messages, one row per (owner, message id)
- JobRollup: Per-company application counters (dashboard data)
- SyncState: Incremental sync watermark per owner
- OwnerCredential: Stored Gmail token bundle per owner
"""

from jobtracker.models.email import MailMessage
from jobtracker.models.job_rollup import JobRollup
from jobtracker.models.sync_state import SyncState
from jobtracker.models.credential import OwnerCredential

__all__ = ["MailMessage", "JobRollup", "SyncState", "OwnerCredential"]
