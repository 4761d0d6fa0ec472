"""
Incremental Gmail sync for one owner.

Flow of a run:
1. Resolve the owner's stored credentials (CredentialMissing if none)
2. Build the Gmail query: override > after:<cursor> > newer_than:<lookback>
3. Page through message ids, fetching each message in full
4. Merge with the stored document (classification fields carry forward)
5. Upsert the document
6. Classification gate: classify + aggregate only unclassified messages
7. Advance the cursor to the highest internalDate seen

A run is strictly sequential. The caller must make sure only one run per
owner is in flight (see services.locks).
"""

import enum
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jobtracker import config
from jobtracker.errors import (
    CredentialMissing,
    DocumentNotFound,
    PersistenceFailure,
    SyncDeadlineExceeded,
)
from jobtracker.services import db_service
from jobtracker.services.gmail_service import build_mailbox, extract_message_body, get_header
from jobtracker.services.job_rollups import apply_classification
from jobtracker.services.stores import CredentialStore, CursorStore

logger = logging.getLogger(__name__)


class SyncPhase(str, enum.Enum):
    """Where a sync run currently is."""
    IDLE = "idle"
    FETCHING_PAGE = "fetching_page"
    FINALIZE = "finalize"
    CREDENTIAL_MISSING = "credential_missing"
    PERSISTENCE_FAILURE = "persistence_failure"


@dataclass(frozen=True)
class SyncOptions:
    """
    Per-run options.

    query_override: raw Gmail query; when set the stored cursor is neither
        read nor advanced
    skip_cursor_advance: keep the stored cursor even after a clean run
    timeout_seconds: abort the run (without advancing the cursor) once
        this much time has passed
    """
    query_override: str = ""
    skip_cursor_advance: bool = False
    timeout_seconds: Optional[float] = None


@dataclass
class SyncResult:
    owner: str
    fetched_count: int
    query: str
    cursor: Optional[int] = None


def build_query(query_override: str, last_internal_date_ms: Optional[int], lookback_days: int) -> str:
    """Gmail search query for a run."""
    override = (query_override or "").strip()
    if override:
        return override
    if last_internal_date_ms:
        return f"after:{int(last_internal_date_ms) // 1000}"
    return f"newer_than:{lookback_days}d"


def is_classified(doc: Optional[dict]) -> bool:
    """Gate check: a document with a classification status is never re-classified."""
    classification = (doc or {}).get("classification")
    return isinstance(classification, dict) and bool(classification.get("status"))


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_internal_date(value, fallback_ms: int) -> int:
    """Gmail sends internalDate as a string of epoch ms; unusable values fall back."""
    try:
        ms = int(value)
    except (TypeError, ValueError):
        return fallback_ms
    return ms if ms > 0 else fallback_ms


def build_document(owner: str, account: str, message_id: str, raw: dict, fetched_at: datetime) -> dict:
    """Map a full Gmail message resource onto an email document."""
    payload = raw.get("payload") or {}
    headers = payload.get("headers") or []
    fallback_ms = int(fetched_at.timestamp() * 1000)

    return {
        "id": raw.get("id") or message_id,
        "owner": owner,
        "threadId": raw.get("threadId") or "",
        "gmailAccount": account,
        "from": get_header(headers, "From") or "unknown",
        "to": get_header(headers, "To"),
        "subject": get_header(headers, "Subject") or "(No subject)",
        "date": get_header(headers, "Date"),
        "snippet": raw.get("snippet") or "",
        "body": extract_message_body(payload) or raw.get("snippet") or "",
        "labelIds": list(raw.get("labelIds") or []),
        "fetchedAt": _iso(fetched_at),
        "internalDateMs": parse_internal_date(raw.get("internalDate"), fallback_ms),
    }


class SyncEngine:
    """
    Syncs one owner's mailbox into the document store.

    All collaborators are injected; defaults are the SQL-backed stores on
    the given session and the Gmail API mailbox.
    """

    def __init__(
        self,
        db: Session,
        classifier=None,
        credentials: Optional[CredentialStore] = None,
        cursors: Optional[CursorStore] = None,
        mailbox_factory: Callable = build_mailbox,
        lookback_days: Optional[int] = None,
        now: Callable[[], datetime] = _now_utc,
    ):
        self.db = db
        self.classifier = classifier
        self.credentials = credentials or CredentialStore(db)
        self.cursors = cursors or CursorStore(db)
        self.mailbox_factory = mailbox_factory
        self.lookback_days = lookback_days or config.GMAIL_LOOKBACK_DAYS
        self.now = now
        self.phase = SyncPhase.IDLE

    # ============ RUN ============

    def sync_owner(self, owner: str, options: Optional[SyncOptions] = None) -> SyncResult:
        """
        Fetch, store and classify the owner's new messages.

        Raises:
            CredentialMissing: nothing stored for the owner
            PersistenceFailure: a document, rollup or cursor write failed
            SyncDeadlineExceeded: options.timeout_seconds ran out
        """
        owner_key = db_service.normalize_owner(owner)
        if not owner_key:
            raise ValueError("Owner email required for Gmail fetch")
        options = options or SyncOptions()

        deadline = None
        if options.timeout_seconds is not None:
            deadline = time.monotonic() + options.timeout_seconds

        self.phase = SyncPhase.IDLE
        try:
            result = self._run(owner_key, options, deadline)
        except CredentialMissing:
            self.phase = SyncPhase.CREDENTIAL_MISSING
            raise
        except PersistenceFailure:
            self.phase = SyncPhase.PERSISTENCE_FAILURE
            raise

        self.phase = SyncPhase.IDLE
        return result

    def _run(self, owner: str, options: SyncOptions, deadline: Optional[float]) -> SyncResult:
        bundle = self.credentials.get(owner)
        if not bundle:
            raise CredentialMissing(owner)

        mailbox = self.mailbox_factory(owner, bundle)
        known_tokens = dict(bundle)
        known_tokens = self._persist_refreshed_tokens(owner, mailbox, known_tokens)

        use_cursor = not (options.query_override or "").strip()
        last_cursor = self.cursors.load(owner) if use_cursor else None
        query = build_query(options.query_override, last_cursor, self.lookback_days)

        account = mailbox.profile_email() or owner
        known_tokens = self._persist_refreshed_tokens(owner, mailbox, known_tokens)
        if account != owner:
            logger.warning(
                "Gmail account (%s) differs from owner (%s). Using owner for storage.",
                account, owner
            )

        fetched = 0
        max_internal_date = last_cursor or 0
        page_token = None

        while True:
            self._check_deadline(deadline, owner)
            self.phase = SyncPhase.FETCHING_PAGE
            ids, page_token = mailbox.list_ids(query, page_token)
            known_tokens = self._persist_refreshed_tokens(owner, mailbox, known_tokens)

            for message_id in ids:
                self._check_deadline(deadline, owner)
                raw = mailbox.get(message_id)
                known_tokens = self._persist_refreshed_tokens(owner, mailbox, known_tokens)

                doc = self._store_message(owner, account, message_id, raw)
                fetched += 1
                max_internal_date = max(max_internal_date, doc["internalDateMs"])

            if not page_token:
                break

        self.phase = SyncPhase.FINALIZE
        cursor = last_cursor
        if use_cursor and not options.skip_cursor_advance and max_internal_date > (last_cursor or 0):
            self.cursors.save(owner, max_internal_date)
            cursor = max_internal_date

        if fetched:
            logger.info('Stored or updated %d Gmail messages for %s (query: "%s")', fetched, owner, query)
        else:
            logger.info("No new Gmail messages found for %s", owner)

        return SyncResult(owner=owner, fetched_count=fetched, query=query, cursor=cursor)

    # ============ PER MESSAGE ============

    def _store_message(self, owner: str, account: str, message_id: str, raw: dict) -> dict:
        doc = build_document(owner, account, message_id, raw, self.now())

        existing = self._lookup_existing(owner, doc["id"])
        if existing:
            doc["classification"] = existing.get("classification")
            doc["classifiedAt"] = existing.get("classifiedAt")
            doc["createdAt"] = existing.get("createdAt") or doc["fetchedAt"]
        else:
            doc["createdAt"] = doc["fetchedAt"]

        stored = db_service.upsert_email(self.db, doc)

        if not is_classified(stored):
            self._classify(owner, doc)
        return doc

    def _lookup_existing(self, owner: str, message_id: str) -> Optional[dict]:
        try:
            return db_service.get_email(self.db, owner, message_id)
        except DocumentNotFound:
            return None
        except SQLAlchemyError as e:
            # Treated as a first sighting; the upsert still goes through
            logger.error("Failed to read existing Gmail doc %s for %s: %s", message_id, owner, e)
            self.db.rollback()
            return None

    def _classify(self, owner: str, doc: dict) -> None:
        if self.classifier is None or not self.classifier.enabled:
            return

        result = self.classifier.classify(doc)
        if result is None:
            return

        classified_at = self.now()
        doc["classification"] = result.to_document_value()
        doc["classifiedAt"] = _iso(classified_at)

        # Rollup and the classified document land in one commit
        apply_classification(
            self.db, owner, result,
            today=classified_at.astimezone(timezone.utc).date(),
            commit_now=False
        )
        db_service.upsert_email(self.db, doc, commit_now=False)
        db_service.commit(self.db, f"classification of {doc['id']}")

    # ============ HELPERS ============

    def _persist_refreshed_tokens(self, owner: str, mailbox, known: dict) -> dict:
        """Store the mailbox's token bundle when a remote call refreshed it."""
        current = mailbox.token_bundle() if hasattr(mailbox, "token_bundle") else None
        if not current:
            return known
        if all(known.get(key) == value for key, value in current.items()):
            return known
        logger.info("Persisting refreshed Gmail tokens for %s", owner)
        self.credentials.put(owner, current)
        return {**known, **current}

    def _check_deadline(self, deadline: Optional[float], owner: str) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            raise SyncDeadlineExceeded(f"Sync for {owner} ran past its deadline")
