# app/services/order_service.py

import logging
import secrets
import string
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.config import settings
from app.constants.order_status import ACTIVE_CODE_STATES, OrderState, can_transition, sources_for
from app.exceptions import CheckoutError, ErrorKind
from app.models.book import BookStatus
from app.models.coupon import Coupon
from app.models.order import Order
from app.models.user import User
from app.services import catalog, entitlement_store
from app.services.coupon_engine import check_usable, full_price, get_coupon, normalize_code, validate_and_price
from app.services.order_event_service import log_order_event
from app.utils.pagination import paginate

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


# -------------------------------
# Buyer
# -------------------------------

def resolve_buyer(
    session: Session,
    current_user: Optional[User],
    email: Optional[str],
    name: str = "",
    phone: Optional[str] = None,
) -> Tuple[User, bool]:
    """Authenticated caller, or a guest matched / registered by email. Returns (user, is_new_user)."""
    if current_user is not None:
        return current_user, False

    email = email.strip().lower()
    user = session.exec(select(User).where(User.email == email)).first()
    if user:
        return user, False

    user = User(email=email, name=name, phone=phone)
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info(f"Registered guest buyer {email} as user {user.id}")
    return user, True


# -------------------------------
# Transfer codes
# -------------------------------

def _random_code() -> str:
    body = "".join(secrets.choice(CODE_ALPHABET) for _ in range(settings.transfer_code_length))
    return f"{settings.transfer_code_prefix}{body}"


def _code_in_use(session: Session, code: str) -> bool:
    return session.exec(
        select(Order.id)
        .where(Order.transfer_code == code)
        .where(Order.state.in_(ACTIVE_CODE_STATES))
    ).first() is not None


def generate_transfer_code(session: Session) -> str:
    for attempt in range(1, settings.transfer_code_max_attempts + 1):
        code = _random_code()
        if not _code_in_use(session, code):
            return code
        logger.warning(f"Transfer code collision on attempt {attempt}")

    raise CheckoutError(
        ErrorKind.CODE_GENERATION_FAILED,
        "Could not allocate a unique transfer code",
    )


# -------------------------------
# Coupon usage
# -------------------------------

def _consume_coupon(session: Session, code: str, now: datetime):
    """Guarded increment; two buyers racing for the last use cannot both win."""
    result = session.execute(
        update(Coupon)
        .where(Coupon.code == code)
        .where(Coupon.is_active == True)  # noqa: E712
        .where(or_(Coupon.expires_at.is_(None), Coupon.expires_at >= now))
        .where(or_(Coupon.usage_limit == 0, Coupon.usage_count < Coupon.usage_limit))
        .values(usage_count=Coupon.usage_count + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        # re-read to report why: deactivated, expired or used up since the quote
        current = session.exec(
            select(Coupon)
            .where(Coupon.code == code)
            .execution_options(populate_existing=True)
        ).first()
        check_usable(current, now)
        raise CheckoutError(ErrorKind.EXHAUSTED, "Coupon usage limit reached")


# -------------------------------
# Lifecycle
# -------------------------------

def _insert_order(
    session: Session,
    book,
    buyer: User,
    coupon_code: Optional[str],
    buyer_name: str,
    buyer_phone: Optional[str],
    now: datetime,
) -> Order:
    if coupon_code:
        code = normalize_code(coupon_code)
        quote = validate_and_price(book.price, get_coupon(session, code), now)
    else:
        quote = full_price(book.price)

    transfer_code = generate_transfer_code(session)

    # increment and insert commit together or not at all
    if quote.coupon_code:
        _consume_coupon(session, quote.coupon_code, now)

    order = Order(
        book_id=book.id,
        user_id=buyer.id,
        buyer_name=buyer_name or buyer.name,
        buyer_email=buyer.email,
        buyer_phone=buyer_phone or buyer.phone,
        price=quote.price,
        coupon_code=quote.coupon_code,
        discount_amount=quote.discount_amount,
        final_amount=quote.final_amount,
        transfer_code=transfer_code,
        state=OrderState.PENDING_PAYMENT,
        created_at=now,
        expires_at=now + timedelta(minutes=settings.payment_window_minutes),
        updated_at=now,
    )
    session.add(order)
    session.flush()

    log_order_event(
        session,
        order_id=order.id,
        event_type="order_created",
        label="Order placed, awaiting bank transfer",
        created_by=f"user:{buyer.id}",
        meta={"coupon_code": quote.coupon_code, "final_amount": quote.final_amount},
    )
    session.commit()
    return order


def create_order(
    session: Session,
    book_id: int,
    buyer: User,
    coupon_code: Optional[str] = None,
    buyer_name: str = "",
    buyer_phone: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    now = now or datetime.utcnow()

    book = catalog.get_book(session, book_id)
    if not book or book.status != BookStatus.PUBLISHED:
        raise CheckoutError(ErrorKind.BOOK_UNAVAILABLE, "Book is not available for sale")

    order = None
    for attempt in range(1, settings.transfer_code_max_attempts + 1):
        try:
            order = _insert_order(session, book, buyer, coupon_code, buyer_name, buyer_phone, now)
            break
        except CheckoutError:
            session.rollback()
            raise
        except IntegrityError:
            # another checkout committed the same code after our check; start over
            session.rollback()
            logger.warning(f"Transfer code taken concurrently on attempt {attempt}")

    if order is None:
        raise CheckoutError(
            ErrorKind.CODE_GENERATION_FAILED,
            "Could not allocate a unique transfer code",
        )

    session.refresh(order)
    logger.info(f"Order {order.id} created for book {book.id}: {order.final_amount} ({order.transfer_code})")

    if order.final_amount == 0 and settings.auto_confirm_zero_amount:
        order = mark_paid(
            session,
            order.id,
            confirmed_amount=0,
            reference="auto-confirm",
            actor="system:auto-confirm",
            now=now,
        )

    return order


def get_order(session: Session, order_id: int) -> Order:
    order = session.get(Order, order_id)
    if not order:
        raise CheckoutError(ErrorKind.NOT_FOUND, "Order not found")
    return order


def get_order_for(
    session: Session,
    order_id: int,
    user: Optional[User] = None,
    transfer_code: Optional[str] = None,
) -> Order:
    """Owner, admin, or whoever holds the transfer code; anyone else gets NOT_FOUND."""
    order = get_order(session, order_id)

    if user is not None and (user.role == "admin" or order.user_id == user.id):
        return order
    if transfer_code and secrets.compare_digest(
        order.transfer_code.encode(), transfer_code.strip().upper().encode()
    ):
        return order

    raise CheckoutError(ErrorKind.NOT_FOUND, "Order not found")


def find_by_transfer_code(session: Session, transfer_code: str) -> Optional[Order]:
    """Exact match; prefers the live order when an old expired one reused the code."""
    orders = session.exec(
        select(Order)
        .where(Order.transfer_code == transfer_code)
        .order_by(Order.created_at.desc())
    ).all()

    for order in orders:
        if order.state in ACTIVE_CODE_STATES:
            return order
    return orders[0] if orders else None


def _transition(session: Session, order_id: int, target: OrderState, now: datetime, **values) -> bool:
    """
    Compare-and-set from any state allowed to move to `target`. Exactly one
    of several racing transitions sees a changed row.
    """
    sources = sources_for(target)
    if not sources:
        return False

    result = session.execute(
        update(Order)
        .where(Order.id == order_id)
        .where(Order.state.in_(sources))
        .values(state=target, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def cancel_order(session: Session, order_id: int, actor: str, now: Optional[datetime] = None) -> Order:
    now = now or datetime.utcnow()
    get_order(session, order_id)

    if not _transition(
        session, order_id, OrderState.CANCELLED, now,
        cancelled_at=now, cancelled_by=actor,
    ):
        session.rollback()
        raise CheckoutError(ErrorKind.INVALID_STATE, "Only orders awaiting payment can be cancelled")

    log_order_event(
        session,
        order_id=order_id,
        event_type="order_cancelled",
        label="Order cancelled",
        created_by=actor,
    )
    session.commit()

    order = get_order(session, order_id)
    session.refresh(order)
    logger.info(f"Order {order_id} cancelled by {actor}")
    return order


def mark_paid(
    session: Session,
    order_id: int,
    confirmed_amount: int,
    reference: Optional[str] = None,
    actor: str = "system:reconciler",
    now: Optional[datetime] = None,
) -> Order:
    """
    PENDING_PAYMENT -> PAID on an exact amount match, granting the
    entitlement in the same commit.
    """
    now = now or datetime.utcnow()
    order = get_order(session, order_id)

    if not can_transition(order.state, OrderState.PAID):
        raise CheckoutError(ErrorKind.INVALID_STATE, f"Order is {order.state.value}")

    if confirmed_amount != order.final_amount:
        logger.warning(
            f"Amount mismatch on order {order_id}: expected {order.final_amount}, got {confirmed_amount}"
        )
        log_order_event(
            session,
            order_id=order_id,
            event_type="amount_mismatch",
            label="Payment amount does not match, needs manual reconciliation",
            created_by=actor,
            meta={"expected": order.final_amount, "received": confirmed_amount, "reference": reference},
        )
        session.commit()
        raise CheckoutError(ErrorKind.AMOUNT_MISMATCH, "Confirmed amount does not match the order total")

    if not _transition(
        session, order_id, OrderState.PAID, now,
        paid_at=now, confirmed_amount=confirmed_amount, payment_reference=reference,
    ):
        session.rollback()
        raise CheckoutError(ErrorKind.INVALID_STATE, "Order is no longer awaiting payment")

    entitlement_store.grant(session, order.user_id, order.book_id, order.id, granted_at=now)

    log_order_event(
        session,
        order_id=order_id,
        event_type="order_paid",
        label="Payment confirmed, access granted",
        created_by=actor,
        meta={"amount": confirmed_amount, "reference": reference},
    )
    session.commit()
    session.refresh(order)

    logger.info(f"Order {order_id} paid ({reference}), book {order.book_id} granted to user {order.user_id}")
    return order


def expire_order(session: Session, order_id: int, now: datetime) -> bool:
    """Does not commit; the sweep commits once per batch."""
    if not _transition(session, order_id, OrderState.EXPIRED, now):
        return False

    log_order_event(
        session,
        order_id=order_id,
        event_type="order_expired",
        label="Payment window elapsed",
    )
    return True


def list_orders(
    session: Session,
    page: int = 1,
    limit: int = 10,
    state: Optional[OrderState] = None,
    search: Optional[str] = None,
) -> dict:
    query = select(Order)

    if state:
        query = query.where(Order.state == state)

    if search:
        s = f"%{search.strip()}%"
        query = query.where(
            or_(
                Order.buyer_email.ilike(s),
                Order.buyer_name.ilike(s),
                Order.transfer_code.ilike(s),
            )
        )

    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate(session=session, query=query, page=page, limit=limit)
