# app/services/sepay_client.py

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

import requests

from app.config import settings
from app.exceptions import UnavailableError
from app.services.payment_reconciler import PaymentSignal, PaymentSignalSource, extract_transfer_code

logger = logging.getLogger(__name__)

SEPAY_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_sepay_time(value: str) -> datetime:
    local = datetime.strptime(value, SEPAY_TIME_FORMAT)
    return local - timedelta(hours=settings.sepay_utc_offset_hours)


def format_sepay_time(value: datetime) -> str:
    local = value + timedelta(hours=settings.sepay_utc_offset_hours)
    return local.strftime(SEPAY_TIME_FORMAT)


def to_minor_units(amount) -> int:
    return int(Decimal(str(amount)))


def signal_from_webhook(payload: dict) -> Optional[PaymentSignal]:
    """Incoming transfers only; outgoing ones are ignored."""
    if payload.get("transferType") != "in":
        return None

    content = payload.get("content") or payload.get("description")
    return PaymentSignal(
        transfer_code=payload.get("code") or extract_transfer_code(content),
        amount=to_minor_units(payload["transferAmount"]),
        received_at=parse_sepay_time(payload["transactionDate"]),
        reference=str(payload.get("referenceCode") or payload["id"]),
        content=content,
    )


class SepayTransactionSource(PaymentSignalSource):
    """Pull-mode source backed by the SePay transaction list API."""

    def __init__(self, api_token: str, api_url: str = None, timeout: int = 10):
        self.api_token = api_token
        self.api_url = api_url or settings.sepay_api_url
        self.timeout = timeout

    def fetch(self, since: datetime) -> List[PaymentSignal]:
        try:
            response = requests.get(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_token}"},
                params={"transaction_date_min": format_sepay_time(since), "limit": 100},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error(f"SePay transaction list failed: {exc}")
            raise UnavailableError("Payment signal source unavailable")

        signals = []
        for txn in response.json().get("transactions") or []:
            amount = to_minor_units(txn.get("amount_in") or 0)
            if amount <= 0:
                continue

            content = txn.get("transaction_content")
            signals.append(
                PaymentSignal(
                    transfer_code=txn.get("code") or extract_transfer_code(content),
                    amount=amount,
                    received_at=parse_sepay_time(txn["transaction_date"]),
                    reference=str(txn.get("reference_number") or txn["id"]),
                    content=content,
                )
            )
        return signals


def default_source() -> Optional[SepayTransactionSource]:
    if not settings.sepay_api_token:
        return None
    return SepayTransactionSource(settings.sepay_api_token)
