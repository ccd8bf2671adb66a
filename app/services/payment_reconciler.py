# app/services/payment_reconciler.py
"""
Matches bank transfer confirmations to pending orders by transfer code.

Push (webhook) and pull (periodic scan) both end up in
on_confirmation_event. The expiry sweep and a confirmation race on the same
conditional update: whichever commits first wins. A confirmation that lands
after the sweep is recorded as LATE and the order stays EXPIRED.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.config import settings
from app.constants.order_status import OrderState
from app.exceptions import CheckoutError, ErrorKind
from app.models.order import Order
from app.models.payment import ConfirmationOutcome, PaymentConfirmation
from app.services import order_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentSignal:
    transfer_code: Optional[str]
    amount: int
    received_at: datetime
    reference: Optional[str] = None
    content: Optional[str] = None


class PaymentSignalSource:
    """Anything that can list incoming transfers received since a point in time."""

    def fetch(self, since: datetime) -> Iterable[PaymentSignal]:
        raise NotImplementedError


def extract_transfer_code(content: Optional[str]) -> Optional[str]:
    """Pull our code out of free-form transfer content; matching stays exact."""
    if not content:
        return None

    pattern = rf"{re.escape(settings.transfer_code_prefix)}[A-Z0-9]{{{settings.transfer_code_length}}}"
    match = re.search(rf"(?<![A-Z0-9])({pattern})(?![A-Z0-9])", content.upper())
    return match.group(1) if match else None


def _already_recorded(session: Session, reference: Optional[str]) -> Optional[PaymentConfirmation]:
    if not reference:
        return None
    return session.exec(
        select(PaymentConfirmation).where(PaymentConfirmation.reference == reference)
    ).first()


# a signal that settled an order (or arrived too late to) is final
SETTLED_OUTCOMES = (ConfirmationOutcome.MATCHED, ConfirmationOutcome.LATE)


def on_confirmation_event(
    session: Session,
    transfer_code: Optional[str],
    amount: int,
    received_at: datetime,
    reference: Optional[str] = None,
    source: str = "push",
    content: Optional[str] = None,
) -> PaymentConfirmation:
    """
    Reconcile one incoming transfer. Re-delivered references are ignored,
    except that an admin may re-run a reference that ended UNMATCHED or
    AMOUNT_MISMATCH; its record is then updated in place.
    """
    seen = _already_recorded(session, reference)
    if seen and (source != "manual" or seen.outcome in SETTLED_OUTCOMES):
        logger.info(f"Payment {reference} already reconciled ({seen.outcome.value})")
        return seen

    code = transfer_code.strip().upper() if transfer_code else None
    order = order_service.find_by_transfer_code(session, code) if code else None

    if order is None:
        outcome = ConfirmationOutcome.UNMATCHED
        logger.warning(f"Unmatched payment {reference}: code={code!r} amount={amount}")
    else:
        try:
            order_service.mark_paid(
                session,
                order.id,
                confirmed_amount=amount,
                reference=reference,
                actor=f"system:{source}",
                now=received_at,
            )
            outcome = ConfirmationOutcome.MATCHED
        except CheckoutError as exc:
            if exc.kind == ErrorKind.AMOUNT_MISMATCH:
                outcome = ConfirmationOutcome.AMOUNT_MISMATCH
            elif exc.kind == ErrorKind.INVALID_STATE:
                outcome = ConfirmationOutcome.LATE
                logger.warning(f"Payment {reference} for order {order.id} arrived in state {order.state.value}")
            else:
                raise

    if seen:
        logger.info(f"Payment {reference} re-reconciled manually: {seen.outcome.value} -> {outcome.value}")
        record = seen
    else:
        record = PaymentConfirmation(reference=reference)

    record.transfer_code = code
    record.amount = amount
    record.received_at = received_at
    record.source = source
    record.content = content or record.content
    record.outcome = outcome
    record.order_id = order.id if order else None
    session.add(record)

    try:
        session.commit()
    except IntegrityError:
        # same reference delivered twice concurrently
        session.rollback()
        return _already_recorded(session, reference)

    session.refresh(record)
    return record


def _last_pull_at(session: Session) -> Optional[datetime]:
    return session.exec(
        select(func.max(PaymentConfirmation.received_at))
        .where(PaymentConfirmation.source == "pull")
    ).first()


def scan_for_confirmations(
    session: Session,
    source: PaymentSignalSource,
    now: Optional[datetime] = None,
) -> List[PaymentConfirmation]:
    now = now or datetime.utcnow()
    since = _last_pull_at(session) or now - timedelta(minutes=settings.payment_window_minutes)

    records = []
    for signal in source.fetch(since):
        if _already_recorded(session, signal.reference):
            continue

        records.append(
            on_confirmation_event(
                session,
                transfer_code=signal.transfer_code or extract_transfer_code(signal.content),
                amount=signal.amount,
                received_at=signal.received_at,
                reference=signal.reference,
                source="pull",
                content=signal.content,
            )
        )

    if records:
        logger.info(f"Pulled {len(records)} payment confirmations since {since.isoformat()}")
    return records


def expire_past_due(session: Session, now: Optional[datetime] = None) -> List[int]:
    now = now or datetime.utcnow()

    candidates = session.exec(
        select(Order.id)
        .where(Order.state == OrderState.PENDING_PAYMENT)
        .where(Order.expires_at < now)
    ).all()

    expired = [
        order_id for order_id in candidates
        if order_service.expire_order(session, order_id, now)
    ]
    session.commit()

    if expired:
        logger.info(f"Expired {len(expired)} unpaid orders")
    return expired
