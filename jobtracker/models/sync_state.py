"""
SyncState model for the per-owner incremental sync watermark.

Stores the highest Gmail internalDate (ms) processed by a completed
incremental run. Persists across server restarts.
"""

from sqlalchemy import Column, String, DateTime, BigInteger
from sqlalchemy.sql import func
from jobtracker.database import Base


class SyncState(Base):
    """Last synced watermark, one row per owner."""
    __tablename__ = "sync_state"

    owner = Column(String(320), primary_key=True)
    last_internal_date_ms = Column(BigInteger)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<SyncState(owner={self.owner}, last_internal_date_ms={self.last_internal_date_ms})>"
