"""
Pydantic schemas shared by the classifier, the aggregator and the API.
"""

import enum

from pydantic import BaseModel, ConfigDict, StrictBool, StrictStr


class ClassificationStatus(str, enum.Enum):
    """Outcome of classifying one email."""
    APPLIED = "applied"
    REJECTED = "rejected"
    NEXT_STEPS = "next_steps"
    COMMENT_ONLY = "comment_only"
    NOT_JOB_RELATED = "not_job_related"


# Statuses that touch a rollup
ACTIONABLE_STATUSES = frozenset({
    ClassificationStatus.APPLIED,
    ClassificationStatus.REJECTED,
    ClassificationStatus.NEXT_STEPS,
    ClassificationStatus.COMMENT_ONLY,
})


class ClassificationResult(BaseModel):
    """
    Model output for one email.

    Parsing is strict: unknown keys, missing keys, a status outside the five
    values or a non-boolean is_job_related all fail validation.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    is_job_related: StrictBool
    status: ClassificationStatus
    summary: StrictStr
    company_name: StrictStr

    def to_document_value(self) -> dict:
        return self.model_dump(mode="json")


class CommentEntry(BaseModel):
    date: str
    note: str


class JobRollupResponse(BaseModel):
    """One company card on the dashboard."""
    id: str
    company_name: str
    applied: int
    rejected: int
    next_steps: int
    comments: list[CommentEntry]
    last_updated: str


class JobsListResponse(BaseModel):
    jobs: list[JobRollupResponse]


class SyncResponse(BaseModel):
    ok: bool
    owner: str
    fetched: int


class GmailStatusResponse(BaseModel):
    connected: bool
