import logging
import secrets
from fastapi import APIRouter, Depends, Header, HTTPException
from sqlmodel import Session
from typing import Optional

from app.config import settings
from app.database import get_session
from app.schemas.payment_schemas import SepayWebhookPayload
from app.services import payment_reconciler
from app.services.sepay_client import signal_from_webhook

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_sepay_key(authorization: Optional[str] = Header(default=None)):
    expected = settings.sepay_webhook_api_key
    if not expected:
        raise HTTPException(503, "Payment webhook is not configured")

    if not authorization or not secrets.compare_digest(
        authorization.encode(), f"Apikey {expected}".encode()
    ):
        raise HTTPException(401, "Invalid webhook credentials")


@router.post("/sepay-webhook", dependencies=[Depends(verify_sepay_key)])
def sepay_webhook(
    payload: SepayWebhookPayload,
    session: Session = Depends(get_session),
):
    signal = signal_from_webhook(payload.model_dump())
    if signal is None:
        logger.info(f"Ignoring outgoing SePay transaction {payload.id}")
        return {"success": True, "ignored": True}

    record = payment_reconciler.on_confirmation_event(
        session,
        transfer_code=signal.transfer_code,
        amount=signal.amount,
        received_at=signal.received_at,
        reference=signal.reference,
        source="push",
        content=signal.content,
    )

    # SePay retries anything that is not a 2xx, so outcomes are reported in the body
    return {"success": True, "outcome": record.outcome, "order_id": record.order_id}
