"""
MailMessage model for storing fetched Gmail messages.

One row per (owner, Gmail message id). Rows are refreshed on every fetch
and never deleted; the classification fields are written once by the
classification gate and carried forward on later refreshes.
"""

from sqlalchemy import Column, String, Text, BigInteger, JSON, Index
from jobtracker.database import Base


class MailMessage(Base):
    """
    Stored mailbox message, partitioned by owner.

    The sync engine works with plain documents (see to_document) so the
    same dict shape flows through the store, the gate and the company query.
    """
    __tablename__ = "emails"

    # Partition key + Gmail identifier (composite key prevents duplicates)
    owner = Column(String(320), primary_key=True)
    id = Column(String(64), primary_key=True)

    thread_id = Column(String(64))
    gmail_account = Column(String(320))

    # Header fields
    sender = Column(Text)
    recipient = Column(Text)
    subject = Column(Text)
    date = Column(Text)  # raw Date header

    snippet = Column(Text)
    body = Column(Text)
    label_ids = Column(JSON, default=list)

    # Timestamps
    fetched_at = Column(String(40))
    internal_date_ms = Column(BigInteger)
    created_at = Column(String(40))

    # Classification (set once)
    classification = Column(JSON)
    classified_at = Column(String(40))

    __table_args__ = (
        Index("ix_emails_owner_internal_date", "owner", "internal_date_ms"),
    )

    def __repr__(self):
        return f"<MailMessage(owner={self.owner}, id={self.id}, subject={self.subject[:30] if self.subject else ''})>"

    def to_document(self) -> dict:
        """Return the stored message as a document dict."""
        doc = {
            "id": self.id,
            "owner": self.owner,
            "threadId": self.thread_id or "",
            "gmailAccount": self.gmail_account or self.owner,
            "from": self.sender or "",
            "to": self.recipient or "",
            "subject": self.subject or "",
            "date": self.date or "",
            "snippet": self.snippet or "",
            "body": self.body or "",
            "labelIds": list(self.label_ids or []),
            "fetchedAt": self.fetched_at,
            "internalDateMs": self.internal_date_ms,
        }
        if self.classification is not None:
            doc["classification"] = self.classification
        if self.classified_at is not None:
            doc["classifiedAt"] = self.classified_at
        if self.created_at is not None:
            doc["createdAt"] = self.created_at
        return doc

    def apply_document(self, doc: dict) -> None:
        """
        Refresh the row from a document dict.

        Fetched fields are overwritten. Classification fields are only written
        when the document carries them and createdAt is kept once set.
        """
        self.thread_id = doc.get("threadId") or ""
        self.gmail_account = doc.get("gmailAccount") or doc["owner"]
        self.sender = doc.get("from") or ""
        self.recipient = doc.get("to") or ""
        self.subject = doc.get("subject") or ""
        self.date = doc.get("date") or ""
        self.snippet = doc.get("snippet") or ""
        self.body = doc.get("body") or ""
        self.label_ids = list(doc.get("labelIds") or [])
        self.fetched_at = doc.get("fetchedAt")
        self.internal_date_ms = doc.get("internalDateMs")
        if self.created_at is None:
            self.created_at = doc.get("createdAt")
        if doc.get("classification") is not None:
            self.classification = doc["classification"]
            self.classified_at = doc.get("classifiedAt")
