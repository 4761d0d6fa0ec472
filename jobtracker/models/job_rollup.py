"""
JobRollup model - per-company application counters for one owner.

Dashboard-facing: each row is one company card with applied / rejected /
next-steps counts and a list of dated comments.
"""

from sqlalchemy import Column, Integer, String, Text, JSON, Index
from jobtracker.database import Base


class JobRollup(Base):
    """
    Aggregated counters for one (owner, company).

    The primary key is "<owner>::<company slug>" so the same company always
    lands on the same row regardless of how the model spelled its name.
    """
    __tablename__ = "job_rollups"

    id = Column(Text, primary_key=True)
    owner = Column(String(320), nullable=False, index=True)

    # ============ COMPANY ============
    company_name = Column(Text, nullable=False)

    # ============ COUNTERS ============
    applied = Column(Integer, nullable=False, default=0)
    rejected = Column(Integer, nullable=False, default=0)
    next_steps = Column(Integer, nullable=False, default=0)

    # List of {"date": "YYYY-MM-DD", "note": str}; old rows may hold bare strings
    comments = Column(JSON, nullable=False, default=list)

    # Civil date, "YYYY-MM-DD"
    last_updated = Column(String(10), nullable=False)

    __table_args__ = (
        Index("ix_rollups_owner_company", "owner", "company_name"),
        Index("ix_rollups_owner_updated", "owner", "last_updated"),
    )

    def __repr__(self):
        return f"<JobRollup(id={self.id}, applied={self.applied}, rejected={self.rejected})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner,
            "company_name": self.company_name,
            "applied": self.applied or 0,
            "rejected": self.rejected or 0,
            "next_steps": self.next_steps or 0,
            "comments": list(self.comments or []),
            "last_updated": self.last_updated,
        }
