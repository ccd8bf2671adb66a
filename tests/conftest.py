import os

# must be set before app.config is imported
os.environ.setdefault("SQLALCHEMY_DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("SWEEP_INTERVAL_SECONDS", "0")
os.environ.setdefault("PAYMENT_WINDOW_MINUTES", "1440")
os.environ.setdefault("DOWNLOAD_TOKEN_TTL_SECONDS", "300")
os.environ.setdefault("SEPAY_WEBHOOK_API_KEY", "test-webhook-key")
os.environ.setdefault("BANK_CODE", "MB")
os.environ.setdefault("BANK_NAME", "MB Bank")
os.environ.setdefault("BANK_ACCOUNT_NUMBER", "0123456789")
os.environ.setdefault("BANK_ACCOUNT_NAME", "BOOKSHOP")
os.environ.setdefault("R2_ACCOUNT_ID", "test-account")
os.environ.setdefault("R2_ACCESS_KEY_ID", "test-access-key")
os.environ.setdefault("R2_SECRET_ACCESS_KEY", "test-secret-access-key")
os.environ.setdefault("R2_BUCKET_NAME", "books")

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from app.database import engine, get_session
from app.main import app
from app.models import Book, BookFile, BookStatus, Coupon, DiscountKind, User
from app.services import order_service
from app.utils.token import create_access_token

NOW = datetime(2026, 10, 1, 12, 0, 0)


@pytest.fixture
def session():
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def client(session):
    def override_get_session():
        try:
            yield session
        finally:
            session.rollback()

    app.dependency_overrides[get_session] = override_get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    def _make(email="reader@example.com", role="user", name="Reader"):
        user = User(email=email, role=role, name=name)
        session.add(user)
        session.commit()
        session.refresh(user)
        return user
    return _make


@pytest.fixture
def make_book(session):
    def _make(price=100000, status=BookStatus.PUBLISHED, title="Clean Architecture"):
        book = Book(title=title, price=price, status=status)
        session.add(book)
        session.commit()
        session.refresh(book)
        return book
    return _make


@pytest.fixture
def make_file(session):
    def _make(book, file_key=None, file_type="pdf"):
        book_file = BookFile(
            book_id=book.id,
            file_key=file_key or f"books/{book.id}/book.{file_type}",
            file_type=file_type,
            file_size=1024,
        )
        session.add(book_file)
        session.commit()
        session.refresh(book_file)
        return book_file
    return _make


@pytest.fixture
def make_coupon(session):
    def _make(code="SALE10", kind=DiscountKind.PERCENTAGE, value=10, usage_limit=0,
              usage_count=0, expires_at=None, is_active=True):
        coupon = Coupon(
            code=code,
            discount_kind=kind,
            value=value,
            usage_limit=usage_limit,
            usage_count=usage_count,
            expires_at=expires_at,
            is_active=is_active,
        )
        session.add(coupon)
        session.commit()
        session.refresh(coupon)
        return coupon
    return _make


@pytest.fixture
def place_order(session):
    def _place(book, user, coupon_code=None, now=NOW):
        return order_service.create_order(session, book.id, user, coupon_code=coupon_code, now=now)
    return _place


def auth_headers(user):
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}
