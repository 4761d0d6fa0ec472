"""Tests for the incremental Gmail sync engine."""

import pytest
from sqlalchemy import Text, func, select
from sqlalchemy.exc import OperationalError

from conftest import OWNER, FakeClassifier, FakeMailbox, gmail_message
from jobtracker.errors import CredentialMissing, PersistenceFailure, SyncDeadlineExceeded
from jobtracker.models import JobRollup, MailMessage
from jobtracker.schemas import ClassificationResult
from jobtracker.services import db_service
from jobtracker.services.job_rollups import rollup_id
from jobtracker.services.sync_engine import (
    SyncOptions,
    SyncPhase,
    build_query,
    is_classified,
    parse_internal_date,
)


def job(status, company="Beta", summary="Update", related=True):
    return ClassificationResult(
        is_job_related=related,
        status=status,
        summary=summary,
        company_name=company,
    )


def email_count(db):
    return db.scalar(select(func.count()).select_from(MailMessage))


class TestBuildQuery:

    def test_override_wins(self):
        assert build_query("after:1 before:2", 5_000_000, 7) == "after:1 before:2"

    def test_cursor_is_floored_to_seconds(self):
        assert build_query("", 200_999, 7) == "after:200"

    def test_default_lookback(self):
        assert build_query("", None, 7) == "newer_than:7d"


class TestHelpers:

    def test_parse_internal_date_falls_back(self):
        assert parse_internal_date("12345", 1) == 12345
        assert parse_internal_date(None, 99) == 99
        assert parse_internal_date("soon", 99) == 99
        assert parse_internal_date("0", 99) == 99

    def test_is_classified(self):
        assert not is_classified({})
        assert not is_classified({"classification": None})
        assert not is_classified({"classification": {"status": ""}})
        assert is_classified({"classification": {"status": "applied"}})


class TestSyncOwner:

    def test_first_sync_stores_messages_and_advances_cursor(self, db, connected_owner, mailbox, make_engine):
        mailbox.add(gmail_message("m1", 100000))
        mailbox.add(gmail_message("m2", 200000))

        result = make_engine().sync_owner("  A@X.com ")

        assert result.owner == OWNER
        assert result.fetched_count == 2
        assert mailbox.queries == ["newer_than:7d"]
        assert db_service.load_cursor(db, OWNER) == 200000
        assert email_count(db) == 2

    def test_resync_without_new_mail_is_a_noop(self, db, connected_owner, mailbox, make_engine):
        mailbox.add(gmail_message("m1", 100000))
        mailbox.add(gmail_message("m2", 200000))
        engine = make_engine()
        engine.sync_owner(OWNER)

        result = engine.sync_owner(OWNER)

        assert result.fetched_count == 0
        assert mailbox.queries[-1] == "after:200"
        assert db_service.load_cursor(db, OWNER) == 200000
        assert email_count(db) == 2

    def test_stored_document_fields(self, db, connected_owner, mailbox, make_engine):
        mailbox.add(gmail_message("m1", 100000, subject="Your application", body="<p>Thanks for applying</p>", html=True))

        make_engine().sync_owner(OWNER)

        doc = db_service.get_email(db, OWNER, "m1")
        assert doc["subject"] == "Your application"
        assert doc["from"] == "jobs@acme.com"
        assert doc["to"] == OWNER
        assert doc["threadId"] == "thread-m1"
        assert doc["body"] == "Thanks for applying"
        assert doc["labelIds"] == ["INBOX"]
        assert doc["internalDateMs"] == 100000
        assert doc["createdAt"] == doc["fetchedAt"]
        assert "classification" not in doc

    def test_paginates_until_exhausted(self, db, connected_owner, make_engine):
        box = FakeMailbox([gmail_message(f"m{i}", 100000 + i) for i in range(5)], page_size=2)

        result = make_engine(box=box).sync_owner(OWNER)

        assert result.fetched_count == 5
        assert box.list_calls == 3
        assert db_service.load_cursor(db, OWNER) == 100004

    def test_query_override_neither_reads_nor_moves_cursor(self, db, connected_owner, mailbox, make_engine):
        db_service.save_cursor(db, OWNER, 50000)
        mailbox.add(gmail_message("m1", 900000))

        result = make_engine().sync_owner(OWNER, SyncOptions(query_override="after:1 before:2"))

        assert result.fetched_count == 1
        assert mailbox.queries == ["after:1 before:2"]
        assert db_service.load_cursor(db, OWNER) == 50000

    def test_skip_cursor_advance(self, db, connected_owner, mailbox, make_engine):
        mailbox.add(gmail_message("m1", 100000))

        make_engine().sync_owner(OWNER, SyncOptions(skip_cursor_advance=True))

        assert db_service.load_cursor(db, OWNER) is None
        assert email_count(db) == 1

    def test_missing_credentials(self, db, mailbox, make_engine):
        engine = make_engine()

        with pytest.raises(CredentialMissing) as exc:
            engine.sync_owner(OWNER)

        assert exc.value.code == "NO_GMAIL_TOKENS"
        assert engine.phase == SyncPhase.CREDENTIAL_MISSING
        assert mailbox.list_calls == 0

    def test_blank_owner_rejected(self, make_engine):
        with pytest.raises(ValueError):
            make_engine().sync_owner("   ")

    def test_deadline_aborts_without_cursor(self, db, connected_owner, mailbox, make_engine):
        mailbox.add(gmail_message("m1", 100000))

        with pytest.raises(SyncDeadlineExceeded):
            make_engine().sync_owner(OWNER, SyncOptions(timeout_seconds=0))

        assert db_service.load_cursor(db, OWNER) is None
        assert email_count(db) == 0

    def test_persistence_failure_aborts_run(self, db, connected_owner, mailbox, make_engine, monkeypatch):
        mailbox.add(gmail_message("m1", 100000))

        def broken_upsert(*args, **kwargs):
            raise PersistenceFailure("disk full")

        monkeypatch.setattr(db_service, "upsert_email", broken_upsert)
        engine = make_engine()

        with pytest.raises(PersistenceFailure):
            engine.sync_owner(OWNER)

        assert engine.phase == SyncPhase.PERSISTENCE_FAILURE
        assert db_service.load_cursor(db, OWNER) is None

    def test_lookup_error_is_not_fatal(self, db, connected_owner, mailbox, make_engine, monkeypatch):
        mailbox.add(gmail_message("m1", 100000))
        real_get = db_service.get_email

        def flaky_get(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("timeout"))

        monkeypatch.setattr(db_service, "get_email", flaky_get)
        result = make_engine().sync_owner(OWNER)
        monkeypatch.setattr(db_service, "get_email", real_get)

        assert result.fetched_count == 1
        assert db_service.get_email(db, OWNER, "m1")["id"] == "m1"

    def test_blank_override_falls_back_to_cursor(self, db, connected_owner, mailbox, make_engine):
        db_service.save_cursor(db, OWNER, 150000)
        mailbox.add(gmail_message("m1", 100000))
        mailbox.add(gmail_message("m2", 200000))

        result = make_engine().sync_owner(OWNER, SyncOptions(query_override="   "))

        assert mailbox.queries == ["after:150"]
        assert result.fetched_count == 1
        assert db_service.load_cursor(db, OWNER) == 200000

    def test_lookup_error_keeps_stored_classification(self, db, connected_owner, mailbox, make_engine, monkeypatch):
        mailbox.add(gmail_message("m1", 100000))
        classifier = FakeClassifier({"m1": job("applied")})
        engine = make_engine(classifier)
        engine.sync_owner(OWNER)
        first = db_service.get_email(db, OWNER, "m1")
        real_get = db_service.get_email

        def flaky_get(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("timeout"))

        monkeypatch.setattr(db_service, "get_email", flaky_get)
        engine.sync_owner(OWNER, SyncOptions(query_override="in:anywhere"))
        monkeypatch.setattr(db_service, "get_email", real_get)

        refreshed = db_service.get_email(db, OWNER, "m1")
        assert classifier.calls == ["m1"]
        assert refreshed["classification"] == first["classification"]
        assert refreshed["classifiedAt"] == first["classifiedAt"]
        assert refreshed["createdAt"] == first["createdAt"]
        assert db.get(JobRollup, "a@x.com::beta").applied == 1

    def test_refreshed_tokens_are_persisted(self, db, connected_owner, mailbox, make_engine):
        mailbox.bundle = {"token": "access-2", "expiry": "2026-03-10T16:30:00Z"}

        make_engine().sync_owner(OWNER)

        tokens = db_service.load_tokens(db, OWNER)
        assert tokens["token"] == "access-2"
        assert tokens["expiry"] == "2026-03-10T16:30:00Z"
        assert tokens["refresh_token"] == "refresh-1"


class TestClassificationGate:

    def test_classifies_and_aggregates_new_messages(self, db, connected_owner, mailbox, make_engine):
        mailbox.add(gmail_message("m1", 100000))
        classifier = FakeClassifier({"m1": job("applied", company="Acme Corp")})

        make_engine(classifier).sync_owner(OWNER)

        doc = db_service.get_email(db, OWNER, "m1")
        assert doc["classification"]["status"] == "applied"
        assert doc["classification"]["company_name"] == "Acme Corp"
        assert doc["classifiedAt"] is not None
        rollup = db.get(JobRollup, "a@x.com::acme_corp")
        assert rollup.applied == 1

    def test_classified_message_is_not_reclassified(self, db, connected_owner, mailbox, make_engine):
        mailbox.add(gmail_message("m1", 100000))
        classifier = FakeClassifier({"m1": job("applied")})
        engine = make_engine(classifier)
        engine.sync_owner(OWNER)
        first = db_service.get_email(db, OWNER, "m1")

        engine.sync_owner(OWNER, SyncOptions(query_override="in:anywhere"))

        refreshed = db_service.get_email(db, OWNER, "m1")
        assert classifier.calls == ["m1"]
        assert email_count(db) == 1
        assert refreshed["classification"] == first["classification"]
        assert refreshed["classifiedAt"] == first["classifiedAt"]
        assert refreshed["createdAt"] == first["createdAt"]
        assert db.get(JobRollup, "a@x.com::beta").applied == 1

    def test_failed_classification_is_retried_next_sync(self, db, connected_owner, mailbox, make_engine):
        mailbox.add(gmail_message("m1", 100000))
        classifier = FakeClassifier({})
        engine = make_engine(classifier)
        engine.sync_owner(OWNER)

        assert "classification" not in db_service.get_email(db, OWNER, "m1")

        classifier.results["m1"] = job("rejected")
        engine.sync_owner(OWNER, SyncOptions(query_override="in:anywhere"))

        assert classifier.calls == ["m1", "m1"]
        assert db_service.get_email(db, OWNER, "m1")["classification"]["status"] == "rejected"

    def test_three_emails_roll_up_for_one_company(self, db, connected_owner, mailbox, make_engine):
        for i in range(3):
            mailbox.add(gmail_message(f"m{i}", 100000 + i))
        classifier = FakeClassifier({
            "m0": job("applied"),
            "m1": job("rejected", company="  beta "),
            "m2": job("applied", company="BETA"),
        })

        make_engine(classifier).sync_owner(OWNER)

        rollup = db.get(JobRollup, "a@x.com::beta")
        assert (rollup.applied, rollup.rejected, rollup.next_steps) == (2, 1, 0)
        assert rollup.last_updated == "2026-03-10"

    def test_not_job_related_leaves_rollups_alone(self, db, connected_owner, mailbox, make_engine):
        mailbox.add(gmail_message("m1", 100000))
        classifier = FakeClassifier({"m1": job("not_job_related", related=False)})

        make_engine(classifier).sync_owner(OWNER)

        assert db.scalar(select(func.count()).select_from(JobRollup)) == 0
        assert db_service.get_email(db, OWNER, "m1")["classification"]["status"] == "not_job_related"

    def test_disabled_classifier_is_skipped(self, db, connected_owner, mailbox, make_engine):
        mailbox.add(gmail_message("m1", 100000))
        classifier = FakeClassifier({"m1": job("applied")})
        classifier.enabled = False

        make_engine(classifier).sync_owner(OWNER)

        assert classifier.calls == []


class TestLongFields:

    def test_free_form_columns_are_unbounded(self):
        emails = MailMessage.__table__.c
        rollups = JobRollup.__table__.c
        for column in (emails.sender, emails.subject, emails.date, rollups.company_name, rollups.id):
            assert isinstance(column.type, Text)

    def test_long_headers_and_company_are_stored_whole(self, db, connected_owner, mailbox, make_engine):
        subject = "Re: " * 400 + "Interview"
        sender = "Recruiting Team " * 60 + "<jobs@acme.com>"
        company = "Acme " * 80
        mailbox.add(gmail_message("m1", 100000, subject=subject, sender=sender))
        classifier = FakeClassifier({"m1": job("applied", company=company)})

        make_engine(classifier).sync_owner(OWNER)

        doc = db_service.get_email(db, OWNER, "m1")
        assert doc["subject"] == subject
        assert doc["from"] == sender
        rollup = db.get(JobRollup, rollup_id(OWNER, company))
        assert rollup.company_name == company.strip()
        assert db_service.load_cursor(db, OWNER) == 100000
