from sqlalchemy import CheckConstraint
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class DiscountKind(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class Coupon(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint(
            "usage_limit = 0 OR usage_count <= usage_limit",
            name="ck_coupon_usage_within_limit",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)  # always uppercase

    discount_kind: DiscountKind
    value: int

    usage_limit: int = Field(default=0)  # 0 = unlimited
    usage_count: int = Field(default=0)

    expires_at: Optional[datetime] = None
    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
