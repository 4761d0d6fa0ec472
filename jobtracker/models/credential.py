"""
OwnerCredential model - stored Gmail OAuth token bundle per owner.
"""

from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func
from jobtracker.database import Base


class OwnerCredential(Base):
    """Token bundle (access_token, refresh_token, expiry, ...) for one owner."""
    __tablename__ = "owner_credentials"

    owner = Column(String(320), primary_key=True)
    tokens = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<OwnerCredential(owner={self.owner})>"
