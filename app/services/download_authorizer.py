# app/services/download_authorizer.py

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from jose import JWTError, jwt
from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from app.config import settings
from app.exceptions import CheckoutError, ErrorKind, forbidden
from app.models.download_redemption import DownloadRedemption
from app.services import catalog, entitlement_store, r2_client

logger = logging.getLogger(__name__)

TOKEN_PURPOSE = "download"


@dataclass(frozen=True)
class AuthorizationToken:
    token: str
    download_url: str
    user_id: int
    book_id: int
    file_id: int
    issued_at: datetime
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())


def _timestamp(value: datetime) -> int:
    return calendar.timegm(value.utctimetuple())


def _from_timestamp(value: int) -> datetime:
    return datetime(1970, 1, 1) + timedelta(seconds=value)


def download_filename(book, book_file) -> str:
    return f"{book.title}.{book_file.file_type}"


def authorize(
    session: Session,
    user_id: int,
    book_id: int,
    file_id: int,
    now: Optional[datetime] = None,
) -> AuthorizationToken:
    """
    Short-lived capability for one (user, book, file). No download cap:
    every call while entitled yields a fresh, independent token, and each
    token redeems once.
    """
    now = now or datetime.utcnow()

    if not entitlement_store.is_entitled(session, user_id, book_id):
        raise forbidden()

    book_file = catalog.get_book_file(session, file_id)
    if book_file is None or book_file.book_id != book_id:
        raise CheckoutError(ErrorKind.NOT_FOUND, "File not found")

    filename = download_filename(catalog.get_book(session, book_id), book_file)
    ttl = settings.download_token_ttl_seconds
    expires_at = now + timedelta(seconds=ttl)

    token = jwt.encode(
        {
            "sub": str(user_id),
            "book": book_id,
            "file": file_id,
            "key": book_file.file_key,
            "name": filename,
            "purpose": TOKEN_PURPOSE,
            "jti": uuid4().hex,
            "iat": _timestamp(now),
            "exp": _timestamp(expires_at),
        },
        settings.secret_key,
        algorithm=settings.algorithm,
    )

    url = r2_client.to_presigned_url(book_file.file_key, expires=ttl, filename=filename)

    logger.info(f"Download authorized: user {user_id}, book {book_id}, file {file_id}")
    return AuthorizationToken(
        token=token,
        download_url=url,
        user_id=user_id,
        book_id=book_id,
        file_id=file_id,
        issued_at=now,
        expires_at=expires_at,
    )


def decode_download_token(token: str, now: Optional[datetime] = None) -> dict:
    """Check a token at the storage edge; expiry is judged against `now`."""
    now = now or datetime.utcnow()

    try:
        claims = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"verify_exp": False},
        )
    except JWTError:
        raise forbidden()

    if claims.get("purpose") != TOKEN_PURPOSE:
        raise forbidden()

    if claims["exp"] <= _timestamp(now):
        raise CheckoutError(ErrorKind.EXPIRED, "Download link has expired")

    return claims


def redeem_download_token(session: Session, token: str, now: Optional[datetime] = None) -> str:
    """
    Spend a token at the storage edge. Returns a presigned URL valid for the
    token's remaining lifetime; a second redemption is FORBIDDEN.
    """
    now = now or datetime.utcnow()
    claims = decode_download_token(token, now)

    try:
        session.execute(
            insert(DownloadRedemption).values(
                jti=claims["jti"],
                user_id=int(claims["sub"]),
                book_id=claims["book"],
                file_id=claims["file"],
                expires_at=_from_timestamp(claims["exp"]),
                redeemed_at=now,
            )
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.warning(f"Download token {claims['jti']} replayed for file {claims['file']}")
        raise forbidden()

    remaining = claims["exp"] - _timestamp(now)
    logger.info(f"Download token redeemed: user {claims['sub']}, file {claims['file']}")
    return r2_client.to_presigned_url(claims["key"], expires=remaining, filename=claims.get("name"))


def prune_redemptions(session: Session, now: Optional[datetime] = None) -> int:
    """Drops spent tokens past their expiry; decoding already rejects those as EXPIRED."""
    now = now or datetime.utcnow()

    result = session.execute(
        delete(DownloadRedemption).where(DownloadRedemption.expires_at <= now)
    )
    session.commit()

    if result.rowcount:
        logger.info(f"Pruned {result.rowcount} spent download tokens")
    return result.rowcount
