from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.database import get_session
from app.models.user import User
from app.schemas.checkout_schemas import DownloadResponse, MyBooksResponse, RedeemRequest, RedeemResponse
from app.services import download_authorizer, entitlement_store
from app.utils.token import get_current_user

router = APIRouter()


@router.get("/my-books", response_model=MyBooksResponse)
def my_books(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return {"results": entitlement_store.list_library(session, current_user.id)}


@router.post("/download/redeem", response_model=RedeemResponse)
def redeem_download(
    payload: RedeemRequest,
    session: Session = Depends(get_session),
):
    """The token is the credential here; each one works once."""
    return {"download_url": download_authorizer.redeem_download_token(session, payload.token)}


@router.get("/{book_id}/download/{file_id}", response_model=DownloadResponse)
def download_file(
    book_id: int,
    file_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    grant = download_authorizer.authorize(session, current_user.id, book_id, file_id)

    return {
        "download_url": grant.download_url,
        "token": grant.token,
        "expires_in": grant.expires_in,
        "expires_at": grant.expires_at,
    }
