"""
Gmail sync endpoints.

- POST /gmail/fetch: run an incremental sync for the signed-in owner
- GET /gmail/status: whether the owner has stored Gmail tokens
- GET /gmail/company: stored emails classified for one company
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from jobtracker import config
from jobtracker.api.v1.deps import get_current_owner, get_sync_engine
from jobtracker.database import get_db
from jobtracker.errors import (
    CredentialMissing,
    SyncDeadlineExceeded,
    SyncInProgress,
)
from jobtracker.schemas import GmailStatusResponse, SyncResponse
from jobtracker.services import db_service
from jobtracker.services.company_filter import filter_by_company, sort_by_internal_date
from jobtracker.services.locks import owner_locks
from jobtracker.services.sync_engine import SyncEngine, SyncOptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gmail", tags=["Gmail"])


@router.post("/fetch", response_model=SyncResponse)
def fetch_gmail(
    owner: str = Depends(get_current_owner),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """
    Manually trigger an incremental sync.

    **Returns:**
    - 200: `{ok, owner, fetched}`
    - 409: Gmail not connected (`code: NO_GMAIL_TOKENS`) or a sync is already running
    - 504: the run hit SYNC_TIMEOUT_SECONDS (progress so far is kept)
    - 500: any other failure
    """
    try:
        with owner_locks.hold(owner, blocking=False):
            result = engine.sync_owner(
                owner,
                SyncOptions(timeout_seconds=config.SYNC_TIMEOUT_SECONDS)
            )
    except CredentialMissing as e:
        return JSONResponse(
            status_code=409,
            content={
                "error": "Gmail access not configured. Please connect your Google account.",
                "code": e.code,
            }
        )
    except SyncInProgress:
        return JSONResponse(
            status_code=409,
            content={"error": "A Gmail sync is already running.", "code": "SYNC_IN_PROGRESS"}
        )
    except SyncDeadlineExceeded:
        logger.warning("Manual Gmail fetch for %s timed out", owner)
        return JSONResponse(status_code=504, content={"error": "Gmail fetch timed out"})
    except Exception:
        logger.exception("Manual Gmail fetch failed for %s", owner)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch Gmail"})

    return SyncResponse(ok=True, owner=result.owner, fetched=result.fetched_count)


@router.get("/status", response_model=GmailStatusResponse)
def gmail_status(owner: str = Depends(get_current_owner), db: Session = Depends(get_db)):
    """Check whether Gmail tokens are stored for the owner."""
    tokens = db_service.load_tokens(db, owner) or {}
    return GmailStatusResponse(connected=len(tokens) > 0)


@router.get("/company")
def company_emails(
    name: str = Query("", description="Company name (case-insensitive exact match)"),
    owner: str = Depends(get_current_owner),
    db: Session = Depends(get_db),
):
    """
    List the owner's job-related emails for one company, newest first.

    **Example:**
    ```
    GET /api/v1/gmail/company?name=Acme
    ```
    """
    company = (name or "").strip()
    if not company:
        raise HTTPException(status_code=400, detail="Company name is required")

    emails = db_service.list_emails(db, owner)
    matches = sort_by_internal_date(filter_by_company(emails, company))
    return {"emails": matches}
