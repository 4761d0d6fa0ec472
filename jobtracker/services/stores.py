"""
Session-bound credential and cursor stores handed to the sync engine.
"""

from typing import Optional

from sqlalchemy.orm import Session

from jobtracker.services import db_service


class CredentialStore:
    """Per-owner Gmail token bundles backed by the owner_credentials table."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, owner: str) -> Optional[dict]:
        return db_service.load_tokens(self.db, owner)

    def put(self, owner: str, bundle: dict) -> dict:
        """Field-level merge: new fields overwrite, the rest are retained."""
        return db_service.save_tokens(self.db, owner, bundle)

    def list_owners(self) -> list[str]:
        return db_service.list_owners(self.db)


class CursorStore:
    """Per-owner incremental sync watermark backed by the sync_state table."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, owner: str) -> Optional[int]:
        return db_service.load_cursor(self.db, owner)

    def save(self, owner: str, last_internal_date_ms: int) -> None:
        db_service.save_cursor(self.db, owner, last_internal_date_ms)
