from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime


class Entitlement(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_entitlement_user_book"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    book_id: int = Field(foreign_key="book.id")

    # first order that granted access; never overwritten
    source_order_id: int = Field(foreign_key="book_order.id")
    granted_at: datetime = Field(default_factory=datetime.utcnow)
