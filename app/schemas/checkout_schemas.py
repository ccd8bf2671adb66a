from datetime import datetime
from pydantic import BaseModel, EmailStr
from typing import List, Optional

from app.constants.order_status import OrderState


class CheckoutRequest(BaseModel):
    book_id: int
    name: str = ""
    email: Optional[EmailStr] = None  # required for guests
    phone: Optional[str] = None
    coupon_code: Optional[str] = None


class BankInfo(BaseModel):
    acc_no: str
    bank_id: str
    bank_name: str
    acc_name: str


class CheckoutResponse(BaseModel):
    order_id: int
    status: OrderState
    transfer_code: str
    price: int
    discount_amount: int
    coupon_code: Optional[str] = None
    amount: int
    qr_code_url: str
    bank: BankInfo
    expires_at: datetime
    is_new_user: bool
    email: str


class OrderStatusResponse(BaseModel):
    order_id: int
    book_id: int
    status: OrderState
    amount: int
    transfer_code: str
    created_at: datetime
    expires_at: datetime
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class LibraryItem(BaseModel):
    book_id: int
    title: str
    order_id: int
    granted_at: datetime


class MyBooksResponse(BaseModel):
    results: List[LibraryItem]


class DownloadResponse(BaseModel):
    download_url: str
    token: str
    expires_in: int
    expires_at: datetime


class RedeemRequest(BaseModel):
    token: str


class RedeemResponse(BaseModel):
    download_url: str
