from fastapi import APIRouter, Depends, Query
from sqlmodel import Session
from typing import Optional

from app.constants.order_status import OrderState
from app.database import get_session
from app.models.order import Order
from app.models.user import User
from app.services import order_service
from app.services.order_event_service import order_timeline
from app.utils.token import require_admin

router = APIRouter()


def _admin_order(order: Order) -> dict:
    return {
        "order_id": order.id,
        "book_id": order.book_id,
        "user_id": order.user_id,
        "buyer": {
            "name": order.buyer_name,
            "email": order.buyer_email,
            "phone": order.buyer_phone,
        },
        "price": order.price,
        "coupon_code": order.coupon_code,
        "discount_amount": order.discount_amount,
        "amount": order.final_amount,
        "transfer_code": order.transfer_code,
        "status": order.state,
        "created_at": order.created_at,
        "expires_at": order.expires_at,
        "paid_at": order.paid_at,
        "payment_reference": order.payment_reference,
        "cancelled_at": order.cancelled_at,
        "cancelled_by": order.cancelled_by,
    }


@router.get("")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderState] = None,
    search: Optional[str] = None,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    data = order_service.list_orders(session, page=page, limit=limit, state=status, search=search)
    data["results"] = [_admin_order(o) for o in data["results"]]
    return data


@router.get("/{order_id}")
def get_order(
    order_id: int,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    order = order_service.get_order(session, order_id)
    return {
        **_admin_order(order),
        "timeline": [
            {
                "event_type": e.event_type,
                "label": e.label,
                "meta": e.meta,
                "created_by": e.created_by,
                "created_at": e.created_at,
            }
            for e in order_timeline(session, order_id)
        ],
    }


@router.post("/{order_id}/cancel")
def cancel_order(
    order_id: int,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    order = order_service.cancel_order(session, order_id, actor=f"admin:{admin.id}")
    return _admin_order(order)
