from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

from app.constants.order_status import OrderState

_ACTIVE_CODE = text("state IN ('PENDING_PAYMENT', 'PAID')")


class Order(SQLModel, table=True):
    __tablename__ = "book_order"
    __table_args__ = (
        Index(
            "uq_book_order_active_transfer_code",
            "transfer_code",
            unique=True,
            postgresql_where=_ACTIVE_CODE,
            sqlite_where=_ACTIVE_CODE,
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    book_id: int = Field(foreign_key="book.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    # buyer snapshot
    buyer_name: str = ""
    buyer_email: str
    buyer_phone: Optional[str] = None

    # pricing snapshot
    price: int
    coupon_code: Optional[str] = None
    discount_amount: int = 0
    final_amount: int

    transfer_code: str = Field(index=True)
    state: OrderState = Field(default=OrderState.PENDING_PAYMENT, index=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime

    # audit
    paid_at: Optional[datetime] = None
    confirmed_amount: Optional[int] = None
    payment_reference: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)
