from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session
from typing import Optional

from app.database import get_session
from app.models.order import Order
from app.models.user import User
from app.schemas.checkout_schemas import CheckoutRequest, CheckoutResponse, OrderStatusResponse
from app.services import order_service
from app.services.payment_instructions import transfer_instruction
from app.utils.token import get_optional_user

router = APIRouter()


def _order_status(order: Order) -> dict:
    return {
        "order_id": order.id,
        "book_id": order.book_id,
        "status": order.state,
        "amount": order.final_amount,
        "transfer_code": order.transfer_code,
        "created_at": order.created_at,
        "expires_at": order.expires_at,
        "paid_at": order.paid_at,
        "cancelled_at": order.cancelled_at,
    }


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(
    payload: CheckoutRequest,
    session: Session = Depends(get_session),
    current_user: Optional[User] = Depends(get_optional_user),
):
    if current_user is None and not payload.email:
        raise HTTPException(422, "Email is required for guest checkout")

    buyer, is_new_user = order_service.resolve_buyer(
        session,
        current_user,
        email=payload.email,
        name=payload.name,
        phone=payload.phone,
    )

    order = order_service.create_order(
        session,
        book_id=payload.book_id,
        buyer=buyer,
        coupon_code=payload.coupon_code,
        buyer_name=payload.name,
        buyer_phone=payload.phone,
    )

    instruction = transfer_instruction(order)

    return {
        "order_id": order.id,
        "status": order.state,
        "price": order.price,
        "discount_amount": order.discount_amount,
        "coupon_code": order.coupon_code,
        **instruction,
        "is_new_user": is_new_user,
        "email": order.buyer_email,
    }


@router.get("/order-status/{order_id}", response_model=OrderStatusResponse)
def get_order_status(
    order_id: int,
    transfer_code: Optional[str] = None,
    session: Session = Depends(get_session),
    current_user: Optional[User] = Depends(get_optional_user),
):
    order = order_service.get_order_for(session, order_id, current_user, transfer_code)
    return _order_status(order)


@router.delete("/order/{order_id}", response_model=OrderStatusResponse)
def cancel_order(
    order_id: int,
    transfer_code: Optional[str] = None,
    session: Session = Depends(get_session),
    current_user: Optional[User] = Depends(get_optional_user),
):
    order_service.get_order_for(session, order_id, current_user, transfer_code)

    actor = f"user:{current_user.id}" if current_user else "guest"
    order = order_service.cancel_order(session, order_id, actor=actor)
    return _order_status(order)
