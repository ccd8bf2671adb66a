from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.database import get_session
from app.models.coupon import Coupon, DiscountKind
from app.models.user import User
from app.schemas.coupon_schemas import CouponCreate, CouponRead, CouponUpdate
from app.utils.pagination import paginate
from app.utils.token import require_admin

router = APIRouter()


def _get_or_404(session: Session, coupon_id: int) -> Coupon:
    coupon = session.get(Coupon, coupon_id)
    if not coupon:
        raise HTTPException(404, "Coupon not found")
    return coupon


def _save(session: Session, coupon: Coupon) -> Coupon:
    session.add(coupon)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if "ck_coupon_usage_within_limit" in str(exc.orig):
            raise HTTPException(409, "Usage limit cannot be lower than the uses already taken")
        raise HTTPException(409, "Coupon code already exists")
    session.refresh(coupon)
    return coupon


@router.get("")
def list_coupons(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = None,
    is_active: bool | None = None,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    query = select(Coupon)

    if search:
        query = query.where(Coupon.code.ilike(f"%{search.strip().upper()}%"))
    if is_active is not None:
        query = query.where(Coupon.is_active == is_active)

    query = query.order_by(Coupon.created_at.desc(), Coupon.id.desc())

    return paginate(
        session=session,
        query=query,
        page=page,
        limit=limit,
        serialize=lambda c: CouponRead.model_validate(c, from_attributes=True),
    )


@router.post("", response_model=CouponRead, status_code=201)
def create_coupon(
    payload: CouponCreate,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    coupon = Coupon(**payload.model_dump())
    return _save(session, coupon)


@router.put("/{coupon_id}", response_model=CouponRead)
def update_coupon(
    coupon_id: int,
    payload: CouponUpdate,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    coupon = _get_or_404(session, coupon_id)
    changes = payload.model_dump(exclude_unset=True)

    kind = changes.get("discount_kind", coupon.discount_kind)
    value = changes.get("value", coupon.value)
    if kind == DiscountKind.PERCENTAGE and value > 100:
        raise HTTPException(422, "Percentage discount cannot exceed 100")

    usage_limit = changes.get("usage_limit", coupon.usage_limit)
    if 0 < usage_limit < coupon.usage_count:
        raise HTTPException(
            409,
            f"Usage limit cannot be lower than the {coupon.usage_count} uses already taken",
        )

    for key, value in changes.items():
        setattr(coupon, key, value)

    coupon.updated_at = datetime.utcnow()
    return _save(session, coupon)


@router.delete("/{coupon_id}")
def delete_coupon(
    coupon_id: int,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    # orders keep their own coupon_code snapshot, nothing references the row
    coupon = _get_or_404(session, coupon_id)
    code = coupon.code
    session.delete(coupon)
    session.commit()
    return {"message": "Coupon deleted", "code": code}
