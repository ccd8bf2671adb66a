from datetime import timedelta

import pytest
import requests
from sqlmodel import select

from app.constants.order_status import OrderState
from app.exceptions import UnavailableError
from app.models.payment import ConfirmationOutcome, PaymentConfirmation
from app.services import entitlement_store, order_service, payment_reconciler
from app.services.payment_reconciler import PaymentSignal, PaymentSignalSource, extract_transfer_code
from app.services.sepay_client import SepayTransactionSource, parse_sepay_time, signal_from_webhook
from conftest import NOW


class StaticSource(PaymentSignalSource):
    def __init__(self, signals):
        self.signals = signals
        self.asked_since = []

    def fetch(self, since):
        self.asked_since.append(since)
        return list(self.signals)


def test_confirmation_marks_order_paid(session, make_book, make_user, place_order):
    user = make_user()
    book = make_book(price=120000)
    order = place_order(book, user)

    record = payment_reconciler.on_confirmation_event(
        session, order.transfer_code, 120000, NOW + timedelta(minutes=3), reference="FT001",
    )

    assert record.outcome == ConfirmationOutcome.MATCHED
    assert record.order_id == order.id

    paid = order_service.get_order(session, order.id)
    assert paid.state == OrderState.PAID
    assert paid.paid_at == NOW + timedelta(minutes=3)
    assert paid.payment_reference == "FT001"
    assert entitlement_store.is_entitled(session, user.id, book.id)


def test_transfer_code_match_is_exact_but_case_insensitive_on_input(session, make_book, make_user, place_order):
    order = place_order(make_book(), make_user())

    near_miss = payment_reconciler.on_confirmation_event(
        session, order.transfer_code[:-1], order.final_amount, NOW, reference="FT002",
    )
    assert near_miss.outcome == ConfirmationOutcome.UNMATCHED
    assert order_service.get_order(session, order.id).state == OrderState.PENDING_PAYMENT

    hit = payment_reconciler.on_confirmation_event(
        session, order.transfer_code.lower(), order.final_amount, NOW, reference="FT003",
    )
    assert hit.outcome == ConfirmationOutcome.MATCHED


def test_unknown_code_is_recorded_unmatched(session):
    record = payment_reconciler.on_confirmation_event(session, "BKZZZZZZZZ", 50000, NOW, reference="FT004")

    assert record.outcome == ConfirmationOutcome.UNMATCHED
    assert record.order_id is None


def test_redelivered_signal_is_ignored(session, make_book, make_user, place_order):
    order = place_order(make_book(), make_user())

    first = payment_reconciler.on_confirmation_event(
        session, order.transfer_code, order.final_amount, NOW, reference="FT005",
    )
    second = payment_reconciler.on_confirmation_event(
        session, order.transfer_code, order.final_amount, NOW, reference="FT005",
    )

    assert second.id == first.id
    assert second.outcome == ConfirmationOutcome.MATCHED


def test_manual_rerun_of_unmatched_reference_updates_record(session, make_book, make_user, place_order):
    user = make_user()
    book = make_book(price=88000)
    order = place_order(book, user)

    typo = payment_reconciler.on_confirmation_event(
        session, "BKMISTYPED", 88000, NOW, reference="FT014", content="BKMISTYPED mua sach",
    )
    assert typo.outcome == ConfirmationOutcome.UNMATCHED

    # a push redelivery of the same reference is still a no-op
    again = payment_reconciler.on_confirmation_event(
        session, order.transfer_code, 88000, NOW, reference="FT014",
    )
    assert again.outcome == ConfirmationOutcome.UNMATCHED

    fixed = payment_reconciler.on_confirmation_event(
        session, order.transfer_code, 88000, NOW, reference="FT014", source="manual",
    )

    assert fixed.id == typo.id
    assert fixed.outcome == ConfirmationOutcome.MATCHED
    assert fixed.order_id == order.id
    assert fixed.source == "manual"
    assert fixed.content == "BKMISTYPED mua sach"
    assert [r.id for r in session.exec(select(PaymentConfirmation)).all()] == [typo.id]
    assert order_service.get_order(session, order.id).state == OrderState.PAID
    assert entitlement_store.is_entitled(session, user.id, book.id)


def test_manual_rerun_of_matched_reference_is_ignored(session, make_book, make_user, place_order):
    order = place_order(make_book(), make_user())
    first = payment_reconciler.on_confirmation_event(
        session, order.transfer_code, order.final_amount, NOW, reference="FT015",
    )

    rerun = payment_reconciler.on_confirmation_event(
        session, "BKOTHER123", 1, NOW, reference="FT015", source="manual",
    )

    assert rerun.id == first.id
    assert rerun.outcome == ConfirmationOutcome.MATCHED
    assert rerun.order_id == order.id


def test_partial_payment_leaves_order_for_manual_reconciliation(session, make_book, make_user, place_order):
    user = make_user()
    book = make_book(price=100000)
    order = place_order(book, user)

    partial = payment_reconciler.on_confirmation_event(
        session, order.transfer_code, 60000, NOW, reference="FT006",
    )

    assert partial.outcome == ConfirmationOutcome.AMOUNT_MISMATCH
    assert partial.order_id == order.id
    assert order_service.get_order(session, order.id).state == OrderState.PENDING_PAYMENT
    assert not entitlement_store.is_entitled(session, user.id, book.id)

    # the buyer tops up with a correct transfer
    full = payment_reconciler.on_confirmation_event(
        session, order.transfer_code, 100000, NOW + timedelta(hours=1), reference="FT007",
    )
    assert full.outcome == ConfirmationOutcome.MATCHED
    assert entitlement_store.is_entitled(session, user.id, book.id)


def test_sweep_expires_only_past_due_orders(session, make_book, make_user, place_order):
    book = make_book()
    stale = place_order(book, make_user(email="stale@example.com"), now=NOW - timedelta(days=2))
    fresh = place_order(book, make_user(email="fresh@example.com"), now=NOW)
    paid = place_order(book, make_user(email="paid@example.com"), now=NOW - timedelta(days=2))
    order_service.mark_paid(session, paid.id, confirmed_amount=paid.final_amount)

    expired = payment_reconciler.expire_past_due(session, NOW)

    assert expired == [stale.id]
    assert order_service.get_order(session, stale.id).state == OrderState.EXPIRED
    assert order_service.get_order(session, fresh.id).state == OrderState.PENDING_PAYMENT
    assert order_service.get_order(session, paid.id).state == OrderState.PAID


def test_sweep_is_safe_to_rerun(session, make_book, make_user, place_order):
    place_order(make_book(), make_user(), now=NOW - timedelta(days=2))

    assert len(payment_reconciler.expire_past_due(session, NOW)) == 1
    assert payment_reconciler.expire_past_due(session, NOW) == []


def test_late_payment_after_sweep_stays_expired(session, make_book, make_user, place_order):
    user = make_user()
    book = make_book()
    order = place_order(book, user, now=NOW - timedelta(days=2))

    payment_reconciler.expire_past_due(session, NOW)
    record = payment_reconciler.on_confirmation_event(
        session, order.transfer_code, order.final_amount, NOW + timedelta(minutes=1), reference="FT008",
    )

    assert record.outcome == ConfirmationOutcome.LATE
    assert record.order_id == order.id
    assert order_service.get_order(session, order.id).state == OrderState.EXPIRED
    assert not entitlement_store.is_entitled(session, user.id, book.id)


def test_payment_before_sweep_wins_even_past_deadline(session, make_book, make_user, place_order):
    user = make_user()
    book = make_book()
    order = place_order(book, user, now=NOW - timedelta(days=2))
    assert order.expires_at < NOW

    record = payment_reconciler.on_confirmation_event(
        session, order.transfer_code, order.final_amount, NOW, reference="FT009",
    )
    expired = payment_reconciler.expire_past_due(session, NOW + timedelta(minutes=1))

    assert record.outcome == ConfirmationOutcome.MATCHED
    assert expired == []
    assert order_service.get_order(session, order.id).state == OrderState.PAID
    assert entitlement_store.is_entitled(session, user.id, book.id)


def test_payment_for_cancelled_order_is_late(session, make_book, make_user, place_order):
    order = place_order(make_book(), make_user())
    order_service.cancel_order(session, order.id, actor="guest")

    record = payment_reconciler.on_confirmation_event(
        session, order.transfer_code, order.final_amount, NOW, reference="FT010",
    )

    assert record.outcome == ConfirmationOutcome.LATE
    assert order_service.get_order(session, order.id).state == OrderState.CANCELLED


def test_scan_feeds_pulled_signals_through_reconciliation(session, make_book, make_user, place_order):
    book = make_book(price=75000)
    order = place_order(book, make_user())
    source = StaticSource([
        PaymentSignal(None, 75000, NOW, reference="FT011", content=f"CK {order.transfer_code} thanh toan"),
        PaymentSignal(None, 10000, NOW, reference="FT012", content="chuyen tien an trua"),
    ])

    records = payment_reconciler.scan_for_confirmations(session, source, now=NOW)

    assert [r.outcome for r in records] == [ConfirmationOutcome.MATCHED, ConfirmationOutcome.UNMATCHED]
    assert all(r.source == "pull" for r in records)
    assert order_service.get_order(session, order.id).state == OrderState.PAID

    # next scan resumes from the newest pulled signal and skips what it has seen
    assert payment_reconciler.scan_for_confirmations(session, source, now=NOW) == []
    assert source.asked_since[-1] == NOW


@pytest.mark.parametrize("content, expected", [
    ("BKAB12CD34", "BKAB12CD34"),
    ("MBVCB.123 bkab12cd34 chuyen khoan", "BKAB12CD34"),
    ("NGUYEN VAN A CK BKAB12CD34-GD 123", "BKAB12CD34"),
    ("XBKAB12CD34", None),
    ("BKAB12CD345", None),
    ("no code here", None),
    (None, None),
])
def test_extract_transfer_code(content, expected):
    assert extract_transfer_code(content) == expected


def test_webhook_payload_is_converted_to_utc_signal():
    signal = signal_from_webhook({
        "id": 92704,
        "gateway": "MBBank",
        "transactionDate": "2026-10-01 19:00:00",
        "accountNumber": "0123456789",
        "code": None,
        "content": "BKAB12CD34 mua sach",
        "transferType": "in",
        "transferAmount": 99000,
        "referenceCode": "MBVCB.3278907687",
    })

    assert signal.transfer_code == "BKAB12CD34"
    assert signal.amount == 99000
    assert signal.received_at == NOW
    assert signal.reference == "MBVCB.3278907687"


def test_outgoing_webhook_transfer_is_ignored():
    assert signal_from_webhook({
        "id": 1, "transactionDate": "2026-10-01 19:00:00",
        "transferType": "out", "transferAmount": 5000,
    }) is None


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status}")

    def json(self):
        return self.payload


def test_sepay_source_parses_transaction_list(monkeypatch):
    captured = {}

    def fake_get(url, headers=None, params=None, timeout=None):
        captured.update(url=url, headers=headers, params=params)
        return FakeResponse({
            "status": 200,
            "transactions": [
                {
                    "id": "1001",
                    "transaction_date": "2026-10-01 19:00:00",
                    "amount_in": "150000.00",
                    "amount_out": "0.00",
                    "transaction_content": "BKQWERTY12 thanh toan",
                    "reference_number": "FT26274",
                    "code": None,
                },
                {
                    "id": "1002",
                    "transaction_date": "2026-10-01 19:05:00",
                    "amount_in": "0.00",
                    "amount_out": "20000.00",
                    "transaction_content": "phi dich vu",
                    "reference_number": "FT26275",
                    "code": None,
                },
            ],
        })

    monkeypatch.setattr(requests, "get", fake_get)
    source = SepayTransactionSource("token-123", api_url="https://sepay.test/list")

    signals = source.fetch(NOW)

    assert captured["headers"] == {"Authorization": "Bearer token-123"}
    assert captured["params"]["transaction_date_min"] == "2026-10-01 19:00:00"
    assert len(signals) == 1
    assert signals[0].transfer_code == "BKQWERTY12"
    assert signals[0].amount == 150000
    assert signals[0].received_at == parse_sepay_time("2026-10-01 19:00:00") == NOW


def test_sepay_outage_is_unavailable(monkeypatch):
    def broken_get(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(requests, "get", broken_get)

    with pytest.raises(UnavailableError):
        SepayTransactionSource("token-123").fetch(NOW)


def test_scheduled_run_pulls_before_sweeping(session, monkeypatch, make_book, make_user, place_order):
    from app.jobs import order_expiry

    waiting = place_order(make_book(), make_user(email="waiting@example.com"), now=NOW - timedelta(days=2))
    abandoned = place_order(make_book(), make_user(email="gone@example.com"), now=NOW - timedelta(days=2))
    source = StaticSource([
        PaymentSignal(waiting.transfer_code, waiting.final_amount, NOW - timedelta(days=1), reference="FT013"),
    ])
    monkeypatch.setattr(order_expiry, "default_source", lambda: source)

    order_expiry.run_once(now=NOW)

    session.expire_all()
    assert order_service.get_order(session, waiting.id).state == OrderState.PAID
    assert order_service.get_order(session, abandoned.id).state == OrderState.EXPIRED
