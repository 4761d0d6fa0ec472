"""
Dashboard endpoint for per-company job rollups.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from jobtracker.api.v1.deps import get_current_owner
from jobtracker.database import get_db
from jobtracker.schemas import JobRollupResponse, JobsListResponse
from jobtracker.services import db_service
from jobtracker.services.job_rollups import upgrade_comments

router = APIRouter(prefix="/jobs", tags=["Dashboard"])


@router.get("", response_model=JobsListResponse)
def list_jobs(
    sort: str = Query("company", description="company (A-Z) or updated (newest first)"),
    owner: str = Depends(get_current_owner),
    db: Session = Depends(get_db),
):
    """
    List the owner's company rollups.

    **Query Parameters:**
    - `sort`: `company` (default) or `updated`
    """
    rollups = db_service.list_rollups(db, owner, sort=sort)

    jobs = []
    for rollup in rollups:
        data = rollup.to_dict()
        # Legacy bare-string comments are shown upgraded; the row is rewritten on its next update
        data["comments"] = upgrade_comments(data["comments"], data["last_updated"] or date.today().isoformat())
        jobs.append(JobRollupResponse(**data))

    return JobsListResponse(jobs=jobs)
