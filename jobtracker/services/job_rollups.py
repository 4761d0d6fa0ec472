"""
Aggregator: turns classification results into per-company rollups.

Counters are additive and NOT idempotent. Applying the same classification
twice counts it twice, so callers must only apply a message's
classification once (the sync engine's gate does this by never
re-classifying a message that already carries a status).
"""

import logging
import re
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from jobtracker.models.job_rollup import JobRollup
from jobtracker.schemas import ACTIONABLE_STATUSES, ClassificationResult, ClassificationStatus
from jobtracker.services import db_service

logger = logging.getLogger(__name__)

MAX_COMMENT_CHARS = 280

_COUNTER_FIELDS = {
    ClassificationStatus.APPLIED: "applied",
    ClassificationStatus.REJECTED: "rejected",
    ClassificationStatus.NEXT_STEPS: "next_steps",
}


def slugify(company_name: str) -> str:
    """Lowercase, trim, and collapse whitespace runs to underscores."""
    return re.sub(r"\s+", "_", (company_name or "").strip().lower())


def rollup_id(owner: str, company_name: str) -> str:
    return f"{db_service.normalize_owner(owner)}::{slugify(company_name)}"


def upgrade_comments(comments, today: str) -> list[dict]:
    """
    Return comments as {date, note} entries.

    Older rows stored bare strings; those are stamped with today's date.
    """
    if not isinstance(comments, list):
        return []
    upgraded = []
    for entry in comments:
        if isinstance(entry, dict):
            upgraded.append({"date": str(entry.get("date") or today), "note": str(entry.get("note") or "")})
        else:
            upgraded.append({"date": today, "note": str(entry)})
    return upgraded


def should_apply(owner: str, classification: Optional[ClassificationResult]) -> bool:
    if classification is None:
        return False
    if not db_service.normalize_owner(owner):
        logger.warning("Missing owner for job status update. Skipping.")
        return False
    if not classification.is_job_related:
        return False
    if classification.status not in ACTIONABLE_STATUSES:
        return False
    if not classification.company_name.strip():
        logger.warning("Classification missing company_name. Skipping.")
        return False
    return True


def apply_classification(
    db: Session,
    owner: str,
    classification: Optional[ClassificationResult],
    today: Optional[date] = None,
    commit_now: bool = True,
) -> Optional[JobRollup]:
    """
    Fold one classification into the owner's rollup for its company.

    Args:
        today: civil date to stamp (defaults to date.today())
        commit_now: False leaves the write pending in the session so the
            caller can commit it together with other changes

    Returns:
        The updated JobRollup, or None when the classification is skipped
    """
    if not should_apply(owner, classification):
        return None

    owner_key = db_service.normalize_owner(owner)
    company_name = classification.company_name.strip()
    doc_id = rollup_id(owner_key, company_name)
    stamp = (today or date.today()).isoformat()

    rollup = db_service.get_rollup(db, owner_key, doc_id)
    if rollup is None:
        rollup = JobRollup(
            id=doc_id,
            owner=owner_key,
            company_name=company_name,
            applied=0,
            rejected=0,
            next_steps=0,
            comments=[],
            last_updated=stamp,
        )

    # Always assign a fresh list so the JSON column is marked dirty
    comments = upgrade_comments(rollup.comments, stamp)

    counter = _COUNTER_FIELDS.get(classification.status)
    if counter is not None:
        setattr(rollup, counter, (getattr(rollup, counter) or 0) + 1)
    elif classification.status == ClassificationStatus.COMMENT_ONLY:
        comments.append({"date": stamp, "note": classification.summary[:MAX_COMMENT_CHARS]})

    rollup.comments = comments
    rollup.last_updated = stamp

    return db_service.save_rollup(db, rollup, commit_now=commit_now)
