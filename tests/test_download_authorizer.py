from datetime import timedelta

import pytest
from jose import jwt
from sqlmodel import select

from app.config import settings
from app.exceptions import FORBIDDEN_MESSAGE, CheckoutError, ErrorKind
from app.models import DownloadRedemption
from app.services import download_authorizer, order_service, r2_client
from app.services.download_authorizer import (
    authorize,
    decode_download_token,
    prune_redemptions,
    redeem_download_token,
)
from conftest import NOW


@pytest.fixture
def owned(session, make_book, make_user, make_file, place_order):
    user = make_user()
    book = make_book()
    book_file = make_file(book)
    order = place_order(book, user)
    order_service.mark_paid(session, order.id, confirmed_amount=order.final_amount, now=NOW)
    return user, book, book_file


def test_entitled_user_gets_scoped_token(session, owned):
    user, book, book_file = owned

    grant = authorize(session, user.id, book.id, book_file.id, now=NOW)

    assert grant.expires_at == NOW + timedelta(seconds=settings.download_token_ttl_seconds)
    assert grant.expires_in == settings.download_token_ttl_seconds
    assert book_file.file_key in grant.download_url

    claims = decode_download_token(grant.token, now=NOW)
    assert claims["sub"] == str(user.id)
    assert claims["book"] == book.id
    assert claims["file"] == book_file.id


def test_reauthorization_is_unlimited_and_tokens_are_distinct(session, owned):
    user, book, book_file = owned

    grants = [authorize(session, user.id, book.id, book_file.id, now=NOW + timedelta(seconds=i)) for i in range(5)]

    assert len({g.token for g in grants}) == 5
    assert len({decode_download_token(g.token, now=NOW)["jti"] for g in grants}) == 5
    # each one keeps its own expiry
    assert grants[0].expires_at < grants[-1].expires_at


def test_token_expires_after_ttl(session, owned):
    user, book, book_file = owned
    grant = authorize(session, user.id, book.id, book_file.id, now=NOW)

    with pytest.raises(CheckoutError) as exc:
        decode_download_token(grant.token, now=grant.expires_at)
    assert exc.value.kind == ErrorKind.EXPIRED


def test_token_signed_elsewhere_is_forbidden(session, owned):
    user, book, book_file = owned
    grant = authorize(session, user.id, book.id, book_file.id, now=NOW)
    claims = decode_download_token(grant.token, now=NOW)
    forged = jwt.encode(claims, "not-our-secret", algorithm=settings.algorithm)

    with pytest.raises(CheckoutError) as exc:
        decode_download_token(forged, now=NOW)
    assert exc.value.kind == ErrorKind.FORBIDDEN


def test_never_purchased_and_pending_look_the_same(session, make_book, make_user, make_file, place_order):
    book = make_book()
    book_file = make_file(book)
    stranger = make_user(email="stranger@example.com")
    pending_buyer = make_user(email="pending@example.com")
    place_order(book, pending_buyer)

    errors = []
    for user in (stranger, pending_buyer):
        with pytest.raises(CheckoutError) as exc:
            authorize(session, user.id, book.id, book_file.id, now=NOW)
        errors.append(exc.value)

    assert all(e.kind == ErrorKind.FORBIDDEN for e in errors)
    assert {e.message for e in errors} == {FORBIDDEN_MESSAGE}


def test_file_of_another_book_is_not_found(session, owned, make_book, make_file):
    user, book, _ = owned
    other_file = make_file(make_book(title="Other"))

    with pytest.raises(CheckoutError) as exc:
        authorize(session, user.id, book.id, other_file.id, now=NOW)
    assert exc.value.kind == ErrorKind.NOT_FOUND


def test_missing_file_is_not_found(session, owned):
    user, book, _ = owned

    with pytest.raises(CheckoutError) as exc:
        authorize(session, user.id, book.id, 4242, now=NOW)
    assert exc.value.kind == ErrorKind.NOT_FOUND


def test_deleted_file_rejects_new_authorizations(session, owned):
    user, book, book_file = owned
    earlier = authorize(session, user.id, book.id, book_file.id, now=NOW)

    book_file.is_deleted = True
    book_file.deleted_at = NOW
    session.add(book_file)
    session.commit()

    with pytest.raises(CheckoutError) as exc:
        authorize(session, user.id, book.id, book_file.id, now=NOW)
    assert exc.value.kind == ErrorKind.NOT_FOUND

    # already issued links are not revoked by the core
    assert decode_download_token(earlier.token, now=NOW)["file"] == book_file.id


def test_forbidden_is_checked_before_file_existence(session, make_book, make_user):
    book = make_book()
    stranger = make_user()

    with pytest.raises(CheckoutError) as exc:
        authorize(session, stranger.id, book.id, 4242, now=NOW)
    assert exc.value.kind == ErrorKind.FORBIDDEN


def test_presigned_url_uses_token_ttl(session, owned, monkeypatch):
    user, book, book_file = owned
    calls = []

    def fake_presign(key, expires=3600, filename=None):
        calls.append((key, expires, filename))
        return f"https://storage.test/{key}?ttl={expires}"

    monkeypatch.setattr(download_authorizer.r2_client, "to_presigned_url", fake_presign)

    grant = authorize(session, user.id, book.id, book_file.id, now=NOW)

    assert calls == [(book_file.file_key, settings.download_token_ttl_seconds, "Clean Architecture.pdf")]
    assert grant.download_url.startswith("https://storage.test/")


@pytest.fixture
def presigned(monkeypatch):
    calls = []

    def fake_presign(key, expires=3600, filename=None):
        calls.append((key, expires, filename))
        return f"https://storage.test/{key}?ttl={expires}"

    monkeypatch.setattr(download_authorizer.r2_client, "to_presigned_url", fake_presign)
    return calls


def test_token_redeems_once(session, owned, presigned):
    user, book, book_file = owned
    grant = authorize(session, user.id, book.id, book_file.id, now=NOW)

    url = redeem_download_token(session, grant.token, now=NOW + timedelta(seconds=60))

    remaining = settings.download_token_ttl_seconds - 60
    assert url == f"https://storage.test/{book_file.file_key}?ttl={remaining}"
    assert presigned[-1] == (book_file.file_key, remaining, "Clean Architecture.pdf")

    with pytest.raises(CheckoutError) as exc:
        redeem_download_token(session, grant.token, now=NOW + timedelta(seconds=61))
    assert exc.value.kind == ErrorKind.FORBIDDEN
    assert exc.value.message == FORBIDDEN_MESSAGE

    # a fresh authorization is still honoured
    again = authorize(session, user.id, book.id, book_file.id, now=NOW + timedelta(seconds=62))
    assert redeem_download_token(session, again.token, now=NOW + timedelta(seconds=63))


def test_expired_token_cannot_be_redeemed(session, owned, presigned):
    user, book, book_file = owned
    grant = authorize(session, user.id, book.id, book_file.id, now=NOW)

    with pytest.raises(CheckoutError) as exc:
        redeem_download_token(session, grant.token, now=grant.expires_at)
    assert exc.value.kind == ErrorKind.EXPIRED
    assert session.exec(select(DownloadRedemption)).all() == []


def test_prune_drops_only_expired_redemptions(session, owned, presigned):
    user, book, book_file = owned
    ttl = settings.download_token_ttl_seconds
    early = authorize(session, user.id, book.id, book_file.id, now=NOW)
    late = authorize(session, user.id, book.id, book_file.id, now=NOW + timedelta(seconds=ttl))
    redeem_download_token(session, early.token, now=NOW)
    redeem_download_token(session, late.token, now=NOW + timedelta(seconds=ttl))

    assert prune_redemptions(session, now=early.expires_at) == 1

    kept = session.exec(select(DownloadRedemption)).all()
    assert [r.jti for r in kept] == [decode_download_token(late.token, now=NOW)["jti"]]

    # the pruned token is past its expiry, the kept one still refuses a replay
    with pytest.raises(CheckoutError) as exc:
        redeem_download_token(session, early.token, now=early.expires_at)
    assert exc.value.kind == ErrorKind.EXPIRED

    with pytest.raises(CheckoutError) as exc:
        redeem_download_token(session, late.token, now=early.expires_at)
    assert exc.value.kind == ErrorKind.FORBIDDEN


def test_presigned_url_names_the_download(monkeypatch):
    captured = {}

    class FakeS3:
        def generate_presigned_url(self, operation, Params=None, ExpiresIn=None):
            captured.update(Params)
            return "https://storage.test/signed"

    monkeypatch.setattr(r2_client, "get_s3_client", lambda: FakeS3())

    r2_client.to_presigned_url("books/1/book.pdf", expires=60, filename='The "Pragmatic" Programmer.pdf')
    assert captured["ResponseContentDisposition"] == "attachment; filename=\"The 'Pragmatic' Programmer.pdf\""

    captured.clear()
    r2_client.to_presigned_url("books/1/book.pdf", expires=60)
    assert "ResponseContentDisposition" not in captured


def test_scheduled_sweep_prunes_spent_tokens(session, owned, presigned, monkeypatch):
    from app.jobs import order_expiry

    user, book, book_file = owned
    grant = authorize(session, user.id, book.id, book_file.id, now=NOW)
    redeem_download_token(session, grant.token, now=NOW)
    monkeypatch.setattr(order_expiry, "default_source", lambda: None)

    order_expiry.run_once(now=NOW)
    session.expire_all()
    assert len(session.exec(select(DownloadRedemption)).all()) == 1

    order_expiry.run_once(now=grant.expires_at)

    session.expire_all()
    assert session.exec(select(DownloadRedemption)).all() == []
