from datetime import datetime
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional

from app.models.coupon import DiscountKind


def _upper(value):
    return value.strip().upper() if isinstance(value, str) else value


class CouponCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    discount_kind: DiscountKind
    value: int = Field(gt=0)
    usage_limit: int = Field(default=0, ge=0)
    expires_at: Optional[datetime] = None
    is_active: bool = True

    normalize_code = field_validator("code")(_upper)

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_kind == DiscountKind.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class CouponUpdate(BaseModel):
    # usage_count is server-managed and deliberately absent
    code: Optional[str] = Field(default=None, min_length=1, max_length=64)
    discount_kind: Optional[DiscountKind] = None
    value: Optional[int] = Field(default=None, gt=0)
    usage_limit: Optional[int] = Field(default=None, ge=0)
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None

    normalize_code = field_validator("code")(_upper)

    # fields may be omitted, but not cleared
    @field_validator("code", "discount_kind", "value", "usage_limit", "is_active")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


class CouponRead(BaseModel):
    id: int
    code: str
    discount_kind: DiscountKind
    value: int
    usage_limit: int
    usage_count: int
    expires_at: Optional[datetime] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class CouponValidateRequest(BaseModel):
    code: str
    book_id: int


class CouponValidateResponse(BaseModel):
    code: str
    original_price: int
    discount_amount: int
    final_amount: int
