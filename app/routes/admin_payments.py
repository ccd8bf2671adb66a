from datetime import datetime
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select
from typing import Optional

from app.database import get_session
from app.models.payment import ConfirmationOutcome, PaymentConfirmation
from app.models.user import User
from app.schemas.payment_schemas import ConfirmationResult, ManualConfirmation
from app.services import payment_reconciler
from app.utils.pagination import paginate
from app.utils.token import require_admin

router = APIRouter()


@router.get("")
def list_confirmations(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    outcome: Optional[ConfirmationOutcome] = None,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    query = select(PaymentConfirmation)

    if outcome:
        query = query.where(PaymentConfirmation.outcome == outcome)

    query = query.order_by(PaymentConfirmation.received_at.desc(), PaymentConfirmation.id.desc())
    return paginate(session=session, query=query, page=page, limit=limit)


@router.post("/confirm", response_model=ConfirmationResult)
def confirm_payment(
    payload: ManualConfirmation,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Manual reconciliation, e.g. after the buyer mistyped the transfer content.
    Sending the bank reference of an UNMATCHED or AMOUNT_MISMATCH record
    re-runs it; settled references are returned unchanged.
    """
    return payment_reconciler.on_confirmation_event(
        session,
        transfer_code=payload.transfer_code,
        amount=payload.amount,
        received_at=payload.received_at or datetime.utcnow(),
        reference=payload.reference,
        source="manual",
    )
