# app/services/entitlement_store.py

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import Session, select

from app.models.book import Book
from app.models.entitlement import Entitlement

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def get_entitlement(session: Session, user_id: int, book_id: int) -> Optional[Entitlement]:
    return session.exec(
        select(Entitlement)
        .where(Entitlement.user_id == user_id)
        .where(Entitlement.book_id == book_id)
    ).first()


def grant(
    session: Session,
    user_id: int,
    book_id: int,
    source_order_id: int,
    granted_at: Optional[datetime] = None,
) -> Entitlement:
    """
    Idempotent: an existing grant for (user, book) is returned unchanged.
    Does not commit; callers grant inside their own transaction.
    """
    values = dict(
        user_id=user_id,
        book_id=book_id,
        source_order_id=source_order_id,
        granted_at=granted_at or datetime.utcnow(),
    )

    insert = _UPSERT_DIALECTS.get(session.get_bind().dialect.name)

    if insert is not None:
        session.execute(
            insert(Entitlement)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["user_id", "book_id"])
        )
    elif get_entitlement(session, user_id, book_id) is None:
        session.add(Entitlement(**values))
        session.flush()

    entitlement = get_entitlement(session, user_id, book_id)
    if entitlement.source_order_id != source_order_id:
        logger.info(
            f"User {user_id} already entitled to book {book_id} "
            f"(order {entitlement.source_order_id}); order {source_order_id} ignored"
        )
    return entitlement


def is_entitled(session: Session, user_id: int, book_id: int) -> bool:
    return get_entitlement(session, user_id, book_id) is not None


def list_entitlements(session: Session, user_id: int) -> List[Entitlement]:
    return session.exec(
        select(Entitlement)
        .where(Entitlement.user_id == user_id)
        .order_by(Entitlement.granted_at.desc(), Entitlement.id.desc())
    ).all()


def list_library(session: Session, user_id: int) -> List[dict]:
    rows = session.exec(
        select(Entitlement, Book)
        .join(Book, Book.id == Entitlement.book_id)
        .where(Entitlement.user_id == user_id)
        .order_by(Entitlement.granted_at.desc(), Entitlement.id.desc())
    ).all()

    return [
        {
            "book_id": book.id,
            "title": book.title,
            "order_id": entitlement.source_order_id,
            "granted_at": entitlement.granted_at,
        }
        for entitlement, book in rows
    ]
