from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class ConfirmationOutcome(str, Enum):
    MATCHED = "MATCHED"
    UNMATCHED = "UNMATCHED"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    LATE = "LATE"


class PaymentConfirmation(SQLModel, table=True):
    __tablename__ = "payment_confirmation"
    id: Optional[int] = Field(default=None, primary_key=True)

    transfer_code: Optional[str] = Field(default=None, index=True)
    amount: int
    received_at: datetime

    # provider transaction id, used to skip re-delivered signals
    reference: Optional[str] = Field(default=None, index=True, unique=True)
    source: str = Field(default="push")  # push | pull | manual
    content: Optional[str] = None

    outcome: ConfirmationOutcome
    order_id: Optional[int] = Field(default=None, foreign_key="book_order.id", index=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
