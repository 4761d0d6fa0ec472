"""
Database service layer for the job mail tracker.

This module is the document store behind the sync pipeline:
- Email documents: get / upsert / list by owner
- Job rollups: get / save / list with sort
- Sync cursor: load / save per owner
- Gmail token bundles: load / merge-save / list owners

Every key is partitioned by the normalized owner. Write failures roll the
session back and surface as PersistenceFailure.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jobtracker.errors import DocumentNotFound, PersistenceFailure
from jobtracker.models.credential import OwnerCredential
from jobtracker.models.email import MailMessage
from jobtracker.models.job_rollup import JobRollup
from jobtracker.models.sync_state import SyncState

logger = logging.getLogger(__name__)


def normalize_owner(owner: Optional[str]) -> str:
    """Trim + lowercase an account identity ("" for None)."""
    return (owner or "").strip().lower()


def commit(db: Session, what: str) -> None:
    """Commit the session, rolling back and raising PersistenceFailure on error."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"Failed to write {what}: {e}") from e


# ============ EMAIL DOCUMENTS ============

def get_email(db: Session, owner: str, message_id: str) -> dict:
    """
    Load one stored email document.

    Raises:
        DocumentNotFound: no document for (owner, message_id)
    """
    row = db.get(MailMessage, (normalize_owner(owner), message_id))
    if row is None:
        raise DocumentNotFound(f"emails/{owner}/{message_id}")
    return row.to_document()


def upsert_email(db: Session, doc: dict, commit_now: bool = True) -> dict:
    """
    Insert or overwrite the email document keyed by (doc["owner"], doc["id"]).

    Re-upserting identical content leaves exactly one row.
    """
    owner = normalize_owner(doc.get("owner"))
    if not owner or not doc.get("id"):
        raise ValueError("Email document needs both owner and id")

    try:
        row = db.get(MailMessage, (owner, doc["id"]))
        if row is None:
            row = MailMessage(owner=owner, id=doc["id"])
            db.add(row)
        row.apply_document({**doc, "owner": owner})
        if commit_now:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"Failed to upsert email {doc['id']}: {e}") from e

    return row.to_document()


def list_emails(db: Session, owner: str) -> list[dict]:
    """All stored email documents for one owner (unordered)."""
    rows = db.scalars(
        select(MailMessage).where(MailMessage.owner == normalize_owner(owner))
    ).all()
    return [row.to_document() for row in rows]


# ============ JOB ROLLUPS ============

def get_rollup(db: Session, owner: str, rollup_id: str) -> Optional[JobRollup]:
    """Load a rollup in the owner's partition, None when absent."""
    row = db.get(JobRollup, rollup_id)
    if row is None or row.owner != normalize_owner(owner):
        return None
    return row


def save_rollup(db: Session, rollup: JobRollup, commit_now: bool = True) -> JobRollup:
    """Add or update a rollup row."""
    try:
        db.add(rollup)
        if commit_now:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"Failed to save rollup {rollup.id}: {e}") from e
    return rollup


def list_rollups(db: Session, owner: str, sort: str = "company") -> list[JobRollup]:
    """
    List an owner's rollups.

    Args:
        sort: "updated" for most recently updated first, anything else
            sorts by company name ascending
    """
    query = select(JobRollup).where(JobRollup.owner == normalize_owner(owner))
    if (sort or "").lower() == "updated":
        query = query.order_by(JobRollup.last_updated.desc(), JobRollup.company_name)
    else:
        query = query.order_by(JobRollup.company_name.asc())
    return list(db.scalars(query).all())


# ============ SYNC CURSOR ============

def load_cursor(db: Session, owner: str) -> Optional[int]:
    """Last synced internalDate (ms) for the owner, None if never synced."""
    row = db.get(SyncState, normalize_owner(owner))
    if row is None or row.last_internal_date_ms is None:
        return None
    return int(row.last_internal_date_ms)


def save_cursor(db: Session, owner: str, last_internal_date_ms: int) -> None:
    key = normalize_owner(owner)
    try:
        row = db.get(SyncState, key)
        if row is None:
            row = SyncState(owner=key)
            db.add(row)
        row.last_internal_date_ms = int(last_internal_date_ms)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"Failed to save sync cursor for {key}: {e}") from e


# ============ GMAIL TOKENS ============

def load_tokens(db: Session, owner: str) -> Optional[dict]:
    """Stored token bundle for the owner, None when nothing is stored."""
    row = db.get(OwnerCredential, normalize_owner(owner))
    if row is None or not row.tokens:
        return None
    return dict(row.tokens)


def save_tokens(db: Session, owner: str, new_tokens: dict) -> dict:
    """
    Merge new token fields into the stored bundle.

    Fields in new_tokens overwrite stored ones, other stored fields are kept
    (a refresh response usually has no refresh_token).
    """
    key = normalize_owner(owner)
    if not key:
        raise ValueError("Owner email required for token store")

    try:
        row = db.get(OwnerCredential, key)
        if row is None:
            row = OwnerCredential(owner=key, tokens={})
            db.add(row)
        merged = {**(row.tokens or {}), **(new_tokens or {})}
        row.tokens = merged
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"Failed to save tokens for {key}: {e}") from e

    return merged


def list_owners(db: Session) -> list[str]:
    """Owners that have a non-empty token bundle."""
    rows = db.scalars(select(OwnerCredential).order_by(OwnerCredential.owner)).all()
    owners = []
    for row in rows:
        key = normalize_owner(row.owner)
        if row.tokens and key and key not in owners:
            owners.append(key)
    return owners
