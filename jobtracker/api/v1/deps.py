"""
Shared FastAPI dependencies.

Sign-in lives outside this service: the fronting proxy resolves the user
and forwards the account address in the X-Owner-Email header.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from jobtracker.database import get_db
from jobtracker.services.classifier import EmailClassifier
from jobtracker.services.db_service import normalize_owner
from jobtracker.services.sync_engine import SyncEngine


def get_current_owner(x_owner_email: Optional[str] = Header(None)) -> str:
    owner = normalize_owner(x_owner_email)
    if not owner:
        raise HTTPException(status_code=401, detail="Not signed in")
    return owner


def get_classifier() -> EmailClassifier:
    return EmailClassifier()


def get_sync_engine(
    db: Session = Depends(get_db),
    classifier: EmailClassifier = Depends(get_classifier),
) -> SyncEngine:
    return SyncEngine(db, classifier=classifier)
