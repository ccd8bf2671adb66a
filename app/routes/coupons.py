from datetime import datetime
from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.database import get_session
from app.exceptions import CheckoutError, ErrorKind
from app.models.book import BookStatus
from app.schemas.coupon_schemas import CouponValidateRequest, CouponValidateResponse
from app.services import catalog
from app.services.coupon_engine import get_coupon, validate_and_price

router = APIRouter()


@router.post("/validate", response_model=CouponValidateResponse)
def validate_coupon(
    payload: CouponValidateRequest,
    session: Session = Depends(get_session),
):
    """Preview a coupon against a book. Does not consume a use."""
    book = catalog.get_book(session, payload.book_id)
    if not book or book.status != BookStatus.PUBLISHED:
        raise CheckoutError(ErrorKind.BOOK_UNAVAILABLE, "Book is not available for sale")

    quote = validate_and_price(book.price, get_coupon(session, payload.code), datetime.utcnow())

    return {
        "code": quote.coupon_code,
        "original_price": quote.price,
        "discount_amount": quote.discount_amount,
        "final_amount": quote.final_amount,
    }
