# app/services/payment_instructions.py

from urllib.parse import urlencode

from app.config import settings
from app.models.order import Order

VIETQR_IMAGE_URL = "https://img.vietqr.io/image/{bank}-{account}-{template}.png"


def beneficiary() -> dict:
    return {
        "bank_id": settings.bank_code,
        "bank_name": settings.bank_name,
        "acc_no": settings.bank_account_number,
        "acc_name": settings.bank_account_name,
    }


def qr_code_url(amount: int, transfer_code: str) -> str:
    base = VIETQR_IMAGE_URL.format(
        bank=settings.bank_code,
        account=settings.bank_account_number,
        template=settings.qr_template,
    )
    query = urlencode({
        "amount": amount,
        "addInfo": transfer_code,
        "accountName": settings.bank_account_name,
    })
    return f"{base}?{query}"


def transfer_instruction(order: Order) -> dict:
    return {
        "amount": order.final_amount,
        "transfer_code": order.transfer_code,
        "qr_code_url": qr_code_url(order.final_amount, order.transfer_code),
        "bank": beneficiary(),
        "expires_at": order.expires_at,
    }
