import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from app.config import settings
from app.database import create_db_and_tables
from app.exceptions import CheckoutError, UnavailableError
from app.jobs.order_expiry import run_periodically
from app.routes import (
    admin_orders,
    admin_payments,
    checkout,
    coupons,
    coupons_admin,
    health,
    payments,
    user_library,
)

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run DB creation ONLY in local
    if settings.ENV == "local":
        create_db_and_tables()

    sweeper = None
    if settings.sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(run_periodically())

    yield

    if sweeper:
        sweeper.cancel()


app = FastAPI(title="Bookshop Checkout API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind.value, "detail": exc.message},
    )


@app.exception_handler(OperationalError)
async def database_unavailable_handler(request: Request, exc: OperationalError):
    logger.error(f"Database unavailable: {exc}")
    return await checkout_error_handler(request, UnavailableError())


app.include_router(user_library.router, prefix="/books", tags=["My Books"])
app.include_router(checkout.router, prefix="/books", tags=["Checkout"])
app.include_router(coupons.router, prefix="/coupons", tags=["Coupons"])
app.include_router(coupons_admin.router, prefix="/admin/books/coupons", tags=["Admin Coupons"])
app.include_router(admin_orders.router, prefix="/admin/orders", tags=["Admin Orders"])
app.include_router(admin_payments.router, prefix="/admin/payments", tags=["Admin Payments"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get("/")
def root():
    return {
        "checkout_endpoints": [
            "/books/checkout", "/books/order-status/{order_id}", "/books/order/{order_id}"
        ],
        "library_endpoints": [
            "/books/my-books", "/books/{book_id}/download/{file_id}"
        ],
        "coupon_endpoints": [
            "/coupons/validate"
        ],
        "admin_endpoints": [
            "/admin/books/coupons", "/admin/orders", "/admin/payments", "/admin/payments/confirm"
        ],
        "payment_endpoints": [
            "/payments/sepay-webhook"
        ],
    }
