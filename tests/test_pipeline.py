"""Tests for the ingestion pipeline (webhook and two-phase mailbox modes)."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from paywatch.db.base import Database
from paywatch.db.unit_of_work import UnitOfWork
from paywatch.emails.gmail_client import MailboxError
from paywatch.emails.models import ExtractedPayment, InboundEmail, MailboxMessage
from paywatch.ingestion.errors import (
    ConfigurationError,
    InvalidStatusTransition,
    PersistenceError,
    UnknownCompanyError,
)
from paywatch.ingestion.status import TransactionStatus
from tests.conftest import FakeMailbox, create_company
from tests.fixtures.sample_emails import (
    ACCESS_EXTRACTION,
    ACCESS_HTML_ALERT,
    GTBANK_CREDIT_ALERT,
    GTBANK_EXTRACTION,
    NEWSLETTER,
    PHISHING_ALERT,
    gemini_json,
)


def _email(sample, company_id, **overrides):
    data = dict(sample, company_id=company_id)
    data.update(overrides)
    return InboundEmail.model_validate(data)


async def _rows(session_factory, company_id):
    async with UnitOfWork(session_factory) as uow:
        return await uow.transactions.list_for_company(company_id)


async def _new_row(session_factory, company_id, raw_content, **fields):
    async with UnitOfWork(session_factory) as uow:
        return await uow.transactions.create(
            company_id=company_id, raw_content=raw_content, source="gmail", **fields
        )


def _drain(subscription):
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    return events


class TestDirectIngestion:
    """Webhook emails go straight to completed transactions."""

    async def test_gtbank_credit_alert(self, pipeline, gemini, session_factory, company, feed):
        gemini.push(gemini_json(GTBANK_EXTRACTION))

        async with feed.subscribe(company.id) as subscription:
            outcome = await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id))
            events = _drain(subscription)

        assert outcome.to_response() == {"success": True, "amount": 5000.0, "sender": "John Doe"}

        rows = await _rows(session_factory, company.id)
        assert len(rows) == 1
        row = rows[0]
        assert row.status == TransactionStatus.COMPLETED
        assert row.amount == Decimal("5000.00")
        assert row.sender_name == "John Doe"
        assert row.bank_source == "GTBank"
        assert row.source == "webhook"
        assert row.message_id == "gtb-msg-0001"

        assert [e.type for e in events] == ["INSERT"]
        assert events[0].transaction["id"] == row.id

    async def test_prompt_carries_email(self, pipeline, gemini, company):
        await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id))

        prompt = gemini.prompts[0]
        assert "alerts@gtbank.com" in prompt
        assert GTBANK_CREDIT_ALERT["subject"] in prompt
        assert "TRF FROM JOHN DOE" in prompt

    async def test_request_parameters(self, pipeline, gemini, company):
        await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id))

        request = gemini.requests[0]
        payload = json.loads(request.content)
        assert request.url.path.endswith("/models/gemini-1.5-flash:generateContent")
        assert request.url.params["key"] == "test-key"
        assert payload["generationConfig"] == {"temperature": 0.0, "maxOutputTokens": 300}

    async def test_body_truncated_before_model(self, pipeline, gemini, company):
        long_text = "Credit alert. " + "x" * 10_000

        await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id, text=long_text))

        assert "x" * 3000 not in gemini.prompts[0]
        assert "x" * 2900 in gemini.prompts[0]

    async def test_html_only_email(self, pipeline, gemini, session_factory, company):
        gemini.push(gemini_json(ACCESS_EXTRACTION))

        outcome = await pipeline.ingest_email(_email(ACCESS_HTML_ALERT, company.id))

        assert outcome.status == "completed"
        assert "NGN 12,500.00" in gemini.prompts[0]
        assert "<b>" not in gemini.prompts[0]

    async def test_phishing_sender_skipped_without_model_call(
        self, pipeline, gemini, session_factory, company
    ):
        outcome = await pipeline.ingest_email(_email(PHISHING_ALERT, company.id))

        assert outcome.to_response() == {
            "skipped": True,
            "reason": "sender_domain_not_allowed",
            "from": PHISHING_ALERT["from"],
        }
        assert gemini.requests == []
        assert await _rows(session_factory, company.id) == []

    async def test_non_payment_email(self, pipeline, gemini, session_factory, company):
        outcome = await pipeline.ingest_email(_email(NEWSLETTER, company.id))

        assert outcome.to_response() == {"processed": False, "reason": "no_payment_data_found"}
        assert len(gemini.requests) == 1
        assert await _rows(session_factory, company.id) == []

    async def test_model_error_is_no_payment(self, pipeline, gemini, session_factory, company):
        gemini.push(httpx.Response(503, text="overloaded"))

        outcome = await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id))

        assert outcome.status == "no_payment"
        assert await _rows(session_factory, company.id) == []

    async def test_out_of_range_amount_is_no_payment(
        self, pipeline, gemini, session_factory, company
    ):
        gemini.push(gemini_json({"amount": 1e30, "sender_name": "John Doe"}))

        outcome = await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id))

        assert outcome.to_response() == {"processed": False, "reason": "no_payment_data_found"}
        assert await _rows(session_factory, company.id) == []

    async def test_duplicate_message_id(self, pipeline, gemini, session_factory, company):
        gemini.when("JOHN DOE", gemini_json(GTBANK_EXTRACTION))

        first = await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id))
        second = await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id))

        assert first.status == "completed"
        assert second.to_response() == {"skipped": True, "reason": "duplicate"}
        assert len(gemini.requests) == 1
        assert len(await _rows(session_factory, company.id)) == 1

    async def test_emails_without_message_id_are_not_deduplicated(
        self, pipeline, gemini, session_factory, company
    ):
        gemini.when("JOHN DOE", gemini_json(GTBANK_EXTRACTION))

        for _ in range(2):
            await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id, message_id=None))

        assert len(await _rows(session_factory, company.id)) == 2

    async def test_racing_duplicate_raises_persistence_error(
        self, pipeline, gemini, session_factory, company
    ):
        gemini.when("JOHN DOE", gemini_json(GTBANK_EXTRACTION))
        await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id))

        async def never_duplicate(uow, message_id):
            return False

        pipeline.dedup.is_duplicate = never_duplicate

        with pytest.raises(PersistenceError):
            await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id))
        assert len(await _rows(session_factory, company.id)) == 1

    async def test_unknown_company(self, pipeline, gemini):
        with pytest.raises(UnknownCompanyError):
            await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, "no-such-company"))
        assert gemini.requests == []

    async def test_missing_extractor(self, make_pipeline, company):
        pipeline = make_pipeline(extractor=None)

        with pytest.raises(ConfigurationError):
            await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id))

    async def test_metrics_recorded(self, pipeline, gemini, metrics, company):
        gemini.push(gemini_json(GTBANK_EXTRACTION))

        await pipeline.ingest_email(_email(GTBANK_CREDIT_ALERT, company.id))
        await pipeline.ingest_email(_email(PHISHING_ALERT, company.id))

        runs = metrics.get_recent_runs()
        assert [r.mode for r in runs] == ["webhook", "webhook"]
        assert runs[0].completed == 1
        assert runs[1].messages_rejected == 1
        assert metrics.get_aggregate_metrics()["total_runs"] == 2

    async def test_concurrent_webhooks_record_separate_runs(
        self, make_pipeline, gemini, metrics, tmp_path
    ):
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'runs.db'}")
        await database.create_all()
        try:
            company = await create_company(database.session_factory)
            pipeline = make_pipeline(session_factory=database.session_factory)

            outcomes = await asyncio.gather(
                pipeline.ingest_email(_email(NEWSLETTER, company.id, message_id="n-1")),
                pipeline.ingest_email(_email(NEWSLETTER, company.id, message_id="n-2")),
            )
        finally:
            await database.dispose()

        assert [o.status for o in outcomes] == ["no_payment", "no_payment"]
        runs = metrics.get_recent_runs()
        assert len(runs) == 2
        assert [(r.messages_seen, r.not_extracted) for r in runs] == [(1, 1), (1, 1)]


class TestClaimMailboxMessages:
    """Phase A: placeholder rows for unread bank alerts."""

    @pytest.fixture
    def mailbox(self):
        return FakeMailbox(
            [
                MailboxMessage(
                    id="g-1",
                    sender=GTBANK_CREDIT_ALERT["from"],
                    subject=GTBANK_CREDIT_ALERT["subject"],
                    body=GTBANK_CREDIT_ALERT["text"],
                ),
                MailboxMessage(
                    id="g-2",
                    sender=PHISHING_ALERT["from"],
                    subject=PHISHING_ALERT["subject"],
                    body=PHISHING_ALERT["text"],
                ),
                MailboxMessage(id="g-3", sender="alerts@kuda.com", subject="Credit", body="x"),
            ]
        )

    async def test_claims_bank_alerts(self, pipeline, gemini, session_factory, company, mailbox):
        result = await pipeline.claim_mailbox_messages(company.id, mailbox)

        assert result.fetched == 3
        assert len(result.claimed_ids) == 2
        assert result.skipped == 1
        assert result.failed == 0
        assert gemini.requests == []

        rows = {r.message_id: r for r in await _rows(session_factory, company.id)}
        assert set(rows) == {"g-1", "g-3"}
        placeholder = rows["g-1"]
        assert placeholder.status == TransactionStatus.NEW
        assert placeholder.amount == Decimal("0")
        assert placeholder.sender_name == ""
        assert placeholder.source == "gmail"
        assert "TRF FROM JOHN DOE" in placeholder.raw_content

    async def test_rejected_sender_left_unread(self, pipeline, company, mailbox):
        await pipeline.claim_mailbox_messages(company.id, mailbox)

        assert mailbox.unread == {"g-2"}
        assert set(mailbox.marked_read) == {"g-1", "g-3"}

    async def test_already_stored_message_skipped_and_marked_read(
        self, pipeline, session_factory, company, mailbox
    ):
        await _new_row(session_factory, company.id, "old body", message_id="g-1")

        result = await pipeline.claim_mailbox_messages(company.id, mailbox)

        assert len(result.claimed_ids) == 1
        assert result.skipped == 2
        assert "g-1" in mailbox.marked_read
        assert len(await _rows(session_factory, company.id)) == 2

    async def test_fetch_failure_counted_and_batch_continues(
        self, pipeline, session_factory, company, mailbox
    ):
        mailbox.broken.add("g-1")

        result = await pipeline.claim_mailbox_messages(company.id, mailbox)

        assert result.failed == 1
        assert len(result.claimed_ids) == 1
        assert "g-1" in mailbox.unread

    async def test_insert_failure_counted_and_batch_continues(
        self, pipeline, session_factory, company, mailbox, metrics, monkeypatch
    ):
        mailbox.messages["g-4"] = MailboxMessage(
            id="g-4", sender="alerts@accessbankplc.com", subject="Credit", body="NGN 900 from Ada"
        )
        mailbox.unread.add("g-4")
        # Stored after the dedup lookup would have run, as with a concurrent poll.
        await _new_row(session_factory, company.id, "old body", message_id="g-3")

        async def never_duplicate(uow, message_id):
            return False

        monkeypatch.setattr(pipeline.dedup, "is_duplicate", never_duplicate)
        metrics.start_run("poll-test", "poll", company.id)

        result = await pipeline.claim_mailbox_messages(company.id, mailbox)
        metrics.end_run("PARTIAL")

        assert result.fetched == 4
        assert result.failed == 1
        assert result.skipped == 1
        assert len(result.claimed_ids) == 2
        assert mailbox.unread == {"g-2", "g-3"}
        assert set(mailbox.marked_read) == {"g-1", "g-4"}
        errors = metrics.get_last_run().errors
        assert len(errors) == 1
        assert errors[0].startswith("g-3: Transaction insert failed")

        rows = await _rows(session_factory, company.id)
        assert sorted(r.message_id for r in rows) == ["g-1", "g-3", "g-4"]

    async def test_publishes_inserts(self, pipeline, company, mailbox, feed):
        async with feed.subscribe(company.id) as subscription:
            await pipeline.claim_mailbox_messages(company.id, mailbox)
            events = _drain(subscription)

        assert [e.type for e in events] == ["INSERT", "INSERT"]
        assert all(e.transaction["status"] == "new" for e in events)


class TestProcessNewTransactions:
    """Phase B: extraction of claimed rows."""

    async def test_completes_failed_and_short_rows(
        self, pipeline, gemini, session_factory, company
    ):
        gemini.when("JOHN DOE", gemini_json(GTBANK_EXTRACTION))
        good = await _new_row(session_factory, company.id, GTBANK_CREDIT_ALERT["text"])
        no_payment = await _new_row(session_factory, company.id, NEWSLETTER["text"])
        short = await _new_row(session_factory, company.id, "too short")

        result = await pipeline.process_new_transactions(company.id)

        assert result.model_dump() == {"processed": 3, "succeeded": 1, "failed": 2, "skipped": 0}
        assert len(gemini.requests) == 2

        async with UnitOfWork(session_factory) as uow:
            good_row = await uow.transactions.get_by_id(good.id)
            no_payment_row = await uow.transactions.get_by_id(no_payment.id)
            short_row = await uow.transactions.get_by_id(short.id)

        assert good_row.status == TransactionStatus.COMPLETED
        assert good_row.amount == Decimal("5000.00")
        assert good_row.sender_name == "John Doe"
        assert good_row.bank_source == "GTBank"
        assert good_row.id == good.id
        assert good_row.company_id == company.id
        assert no_payment_row.status == TransactionStatus.FAILED
        assert short_row.status == TransactionStatus.FAILED

    async def test_retry_is_idempotent(self, pipeline, gemini, session_factory, company):
        gemini.when("JOHN DOE", gemini_json(GTBANK_EXTRACTION))
        await _new_row(session_factory, company.id, GTBANK_CREDIT_ALERT["text"])
        await _new_row(session_factory, company.id, NEWSLETTER["text"])

        await pipeline.process_new_transactions(company.id)
        again = await pipeline.process_new_transactions(company.id)

        assert again.model_dump() == {"processed": 0, "succeeded": 0, "failed": 0, "skipped": 0}
        assert len(gemini.requests) == 2

    async def test_empty_company(self, pipeline, company):
        result = await pipeline.process_new_transactions(company.id)

        assert result.processed == 0

    async def test_restricted_to_given_ids(self, pipeline, gemini, session_factory, company):
        gemini.when("JOHN DOE", gemini_json(GTBANK_EXTRACTION))
        chosen = await _new_row(session_factory, company.id, GTBANK_CREDIT_ALERT["text"])
        left = await _new_row(session_factory, company.id, GTBANK_CREDIT_ALERT["text"])

        result = await pipeline.process_new_transactions(company.id, [chosen.id])

        assert result.processed == 1
        async with UnitOfWork(session_factory) as uow:
            assert (await uow.transactions.get_by_id(left.id)).status == TransactionStatus.NEW

    async def test_other_companies_untouched(self, pipeline, session_factory, company):
        from tests.conftest import create_company

        other = await create_company(session_factory, company_code="OTHER1")
        row = await _new_row(session_factory, other.id, GTBANK_CREDIT_ALERT["text"])

        result = await pipeline.process_new_transactions(company.id)

        assert result.processed == 0
        async with UnitOfWork(session_factory) as uow:
            assert (await uow.transactions.get_by_id(row.id)).status == TransactionStatus.NEW

    async def test_one_failure_does_not_stop_batch(self, make_pipeline, session_factory, company):
        class FlakyExtractor:
            async def extract_payment(self, subject, sender, body):
                if "boom" in body:
                    raise RuntimeError("extractor crashed")
                return ExtractedPayment(amount=100, sender_name="Ada", bank_source="Kuda")

        pipeline = make_pipeline(extractor=FlakyExtractor())
        bad = await _new_row(session_factory, company.id, "boom boom boom boom")
        good = await _new_row(session_factory, company.id, "credit of NGN 100 from Ada")

        result = await pipeline.process_new_transactions(company.id)

        assert result.processed == 2
        assert result.succeeded == 1
        assert result.failed == 1
        async with UnitOfWork(session_factory) as uow:
            assert (await uow.transactions.get_by_id(good.id)).status == TransactionStatus.COMPLETED
            assert (await uow.transactions.get_by_id(bad.id)).status == TransactionStatus.FAILED

    async def test_persistence_failure_marks_row_failed(
        self, pipeline, gemini, session_factory, company, feed, monkeypatch
    ):
        gemini.push(gemini_json(GTBANK_EXTRACTION), gemini_json(ACCESS_EXTRACTION))
        first = await _new_row(session_factory, company.id, GTBANK_CREDIT_ALERT["text"])
        second = await _new_row(session_factory, company.id, ACCESS_HTML_ALERT["html"])
        finalize = pipeline._finalize

        async def failing_finalize(transaction_id, target, **fields):
            if transaction_id == first.id:
                raise PersistenceError("Transaction update failed: disk full")
            return await finalize(transaction_id, target, **fields)

        monkeypatch.setattr(pipeline, "_finalize", failing_finalize)

        async with feed.subscribe(company.id) as subscription:
            result = await pipeline.process_new_transactions(company.id)
            events = _drain(subscription)

        assert result.model_dump() == {"processed": 2, "succeeded": 1, "failed": 1, "skipped": 0}
        async with UnitOfWork(session_factory) as uow:
            assert (await uow.transactions.get_by_id(first.id)).status == TransactionStatus.FAILED
            assert (await uow.transactions.get_by_id(second.id)).status == TransactionStatus.COMPLETED
        assert {(e.transaction["id"], e.transaction["status"]) for e in events} == {
            (first.id, "failed"),
            (second.id, "completed"),
        }

    async def test_reprocess_records_its_own_run(
        self, pipeline, gemini, session_factory, company, metrics
    ):
        gemini.push(gemini_json(GTBANK_EXTRACTION))
        await _new_row(session_factory, company.id, GTBANK_CREDIT_ALERT["text"])
        await _new_row(session_factory, company.id, "tiny")

        result = await pipeline.reprocess_new_transactions(company.id)

        assert result.model_dump() == {"processed": 2, "succeeded": 1, "failed": 1, "skipped": 0}
        run = metrics.get_last_run()
        assert run.mode == "reprocess"
        assert run.status == "PARTIAL"
        assert run.messages_seen == 2
        assert run.completed == 1
        assert run.failed == 1

    async def test_reprocess_unknown_company(self, pipeline, metrics):
        with pytest.raises(UnknownCompanyError):
            await pipeline.reprocess_new_transactions("missing")

        assert metrics.get_last_run() is None

    async def test_lost_claim_is_skipped(self, pipeline, gemini, session_factory, company):
        row = await _new_row(session_factory, company.id, GTBANK_CREDIT_ALERT["text"])
        async with UnitOfWork(session_factory) as uow:
            assert await uow.transactions.claim_for_processing(row.id)

        status = await pipeline._process_transaction(row.id)

        assert status is None
        assert gemini.requests == []

    async def test_stale_processing_rows_failed(self, pipeline, session_factory, company):
        row = await _new_row(session_factory, company.id, GTBANK_CREDIT_ALERT["text"])
        async with UnitOfWork(session_factory) as uow:
            await uow.transactions.update_where(
                {
                    "status": TransactionStatus.PROCESSING,
                    "updated_at": datetime.now(timezone.utc) - timedelta(hours=1),
                },
                id=row.id,
            )

        result = await pipeline.process_new_transactions(company.id)

        assert result.processed == 0
        async with UnitOfWork(session_factory) as uow:
            assert (await uow.transactions.get_by_id(row.id)).status == TransactionStatus.FAILED

    async def test_publishes_updates(self, pipeline, gemini, session_factory, company, feed):
        gemini.when("JOHN DOE", gemini_json(GTBANK_EXTRACTION))
        row = await _new_row(session_factory, company.id, GTBANK_CREDIT_ALERT["text"])

        async with feed.subscribe(company.id) as subscription:
            await pipeline.process_new_transactions(company.id)
            events = _drain(subscription)

        assert [e.type for e in events] == ["UPDATE"]
        assert events[0].transaction["id"] == row.id
        assert events[0].transaction["status"] == "completed"


class TestSyncMailbox:
    """Phase A followed by phase B on the claimed rows."""

    async def test_full_poll(self, pipeline, gemini, session_factory, company, metrics):
        gemini.when("JOHN DOE", gemini_json(GTBANK_EXTRACTION))
        mailbox = FakeMailbox(
            [
                MailboxMessage(
                    id="g-1",
                    sender=GTBANK_CREDIT_ALERT["from"],
                    subject=GTBANK_CREDIT_ALERT["subject"],
                    body=GTBANK_CREDIT_ALERT["text"],
                ),
                MailboxMessage(
                    id="g-2",
                    sender=NEWSLETTER["from"],
                    subject=NEWSLETTER["subject"],
                    body=NEWSLETTER["text"],
                ),
                MailboxMessage(
                    id="g-3",
                    sender=PHISHING_ALERT["from"],
                    subject=PHISHING_ALERT["subject"],
                    body=PHISHING_ALERT["text"],
                ),
            ]
        )
        leftover = await _new_row(session_factory, company.id, GTBANK_CREDIT_ALERT["text"])

        result = await pipeline.sync_mailbox(company.id, mailbox)

        assert result.model_dump() == {"processed": 3, "succeeded": 1, "failed": 1, "skipped": 1}
        statuses = {
            r.message_id: r.status for r in await _rows(session_factory, company.id)
        }
        assert statuses["g-1"] == TransactionStatus.COMPLETED
        assert statuses["g-2"] == TransactionStatus.FAILED
        async with UnitOfWork(session_factory) as uow:
            assert (await uow.transactions.get_by_id(leftover.id)).status == TransactionStatus.NEW

        run = metrics.get_last_run()
        assert run.mode == "poll"
        assert run.status == "PARTIAL"

    async def test_empty_inbox(self, pipeline, company):
        result = await pipeline.sync_mailbox(company.id, FakeMailbox())

        assert result.model_dump() == {"processed": 0, "succeeded": 0, "failed": 0, "skipped": 0}

    async def test_search_failure_propagates(self, pipeline, company, metrics):
        class BrokenMailbox(FakeMailbox):
            async def list_unread_ids(self, limit=None):
                raise MailboxError("Gmail GET /messages error: 500")

        with pytest.raises(MailboxError):
            await pipeline.sync_mailbox(company.id, BrokenMailbox())
        assert metrics.get_last_run().status == "FAILED"

    async def test_unknown_company(self, pipeline):
        with pytest.raises(UnknownCompanyError):
            await pipeline.sync_mailbox("missing", FakeMailbox())


class TestViewerWrites:
    """Manual entries and item descriptions."""

    async def test_record_manual_transaction(self, make_pipeline, session_factory, company, feed):
        pipeline = make_pipeline(extractor=None)

        async with feed.subscribe(company.id) as subscription:
            tx = await pipeline.record_manual_transaction(
                company.id, Decimal("2500"), " Chidi ", "  "
            )
            events = _drain(subscription)

        assert tx.status == TransactionStatus.COMPLETED
        assert tx.source == "manual"
        assert tx.amount == Decimal("2500.00")
        assert tx.sender_name == "Chidi"
        assert tx.bank_source == "Unknown"
        assert [e.type for e in events] == ["INSERT"]

    async def test_manual_requires_positive_amount(self, pipeline, company):
        with pytest.raises(InvalidStatusTransition):
            await pipeline.record_manual_transaction(company.id, Decimal("0"), "Chidi")

    @pytest.mark.parametrize("amount", [Decimal("1e13"), Decimal("1e40")])
    async def test_manual_rejects_amount_beyond_column(self, pipeline, company, amount):
        with pytest.raises(ValueError):
            await pipeline.record_manual_transaction(company.id, amount, "Chidi")

    async def test_manual_requires_sender(self, pipeline, company):
        with pytest.raises(ValueError):
            await pipeline.record_manual_transaction(company.id, Decimal("10"), "   ")

    async def test_manual_unknown_company(self, pipeline):
        with pytest.raises(UnknownCompanyError):
            await pipeline.record_manual_transaction("missing", Decimal("10"), "Chidi")

    async def test_update_item_description(self, pipeline, session_factory, company, feed):
        tx = await pipeline.record_manual_transaction(company.id, Decimal("10"), "Chidi")

        async with feed.subscribe(company.id) as subscription:
            updated = await pipeline.update_item_description(tx.id, "  2 plates of rice ")
            events = _drain(subscription)

        assert updated.item_description == "2 plates of rice"
        assert updated.status == TransactionStatus.COMPLETED
        assert [e.type for e in events] == ["UPDATE"]

    async def test_update_item_description_missing_row(self, pipeline):
        assert await pipeline.update_item_description("missing", "rice") is None
