from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional

from app.models.payment import ConfirmationOutcome


class ManualConfirmation(BaseModel):
    transfer_code: str
    amount: int = Field(ge=0)
    reference: Optional[str] = None
    received_at: Optional[datetime] = None


class SepayWebhookPayload(BaseModel):
    id: int
    gateway: Optional[str] = None
    transactionDate: str
    accountNumber: Optional[str] = None
    code: Optional[str] = None
    content: Optional[str] = None
    transferType: str
    transferAmount: float
    accumulated: Optional[float] = None
    subAccount: Optional[str] = None
    referenceCode: Optional[str] = None
    description: Optional[str] = None


class ConfirmationResult(BaseModel):
    id: int
    transfer_code: Optional[str] = None
    amount: int
    outcome: ConfirmationOutcome
    order_id: Optional[int] = None
    received_at: datetime
