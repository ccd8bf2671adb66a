# app/services/coupon_engine.py

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from app.exceptions import CheckoutError, ErrorKind
from app.models.coupon import Coupon, DiscountKind


@dataclass(frozen=True)
class PriceQuote:
    price: int
    discount_amount: int
    final_amount: int
    coupon_code: Optional[str] = None


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _percentage_discount(price: int, value: int) -> int:
    return (price * value) // 100


def _fixed_discount(price: int, value: int) -> int:
    return min(value, price)


PRICING = {
    DiscountKind.PERCENTAGE: _percentage_discount,
    DiscountKind.FIXED_AMOUNT: _fixed_discount,
}


def get_coupon(session: Session, code: str) -> Optional[Coupon]:
    return session.exec(
        select(Coupon).where(Coupon.code == normalize_code(code))
    ).first()


def check_usable(coupon: Optional[Coupon], now: datetime) -> Coupon:
    if coupon is None:
        raise CheckoutError(ErrorKind.NOT_FOUND, "Coupon not found")

    if not coupon.is_active:
        raise CheckoutError(ErrorKind.INACTIVE, "Coupon is not active")

    if coupon.expires_at is not None and now > coupon.expires_at:
        raise CheckoutError(ErrorKind.EXPIRED, "Coupon has expired")

    if coupon.usage_limit > 0 and coupon.usage_count >= coupon.usage_limit:
        raise CheckoutError(ErrorKind.EXHAUSTED, "Coupon usage limit reached")

    return coupon


def validate_and_price(book_price: int, coupon: Optional[Coupon], now: datetime) -> PriceQuote:
    """
    Price a purchase against a coupon snapshot.

    Never touches usage_count; the order lifecycle increments it in the
    same transaction that creates the order.
    """
    coupon = check_usable(coupon, now)

    discount = PRICING[coupon.discount_kind](book_price, coupon.value)
    final_amount = max(book_price - discount, 0)

    return PriceQuote(
        price=book_price,
        discount_amount=book_price - final_amount,
        final_amount=final_amount,
        coupon_code=coupon.code,
    )


def full_price(book_price: int) -> PriceQuote:
    return PriceQuote(price=book_price, discount_amount=0, final_amount=book_price)
