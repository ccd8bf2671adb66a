import asyncio
import logging
from datetime import datetime
from sqlmodel import Session

from app.config import settings
from app.database import engine
from app.exceptions import UnavailableError
from app.services import download_authorizer, payment_reconciler
from app.services.sepay_client import default_source

logger = logging.getLogger(__name__)


def expire_unpaid_orders(now: datetime = None):
    with Session(engine) as session:
        return payment_reconciler.expire_past_due(session, now or datetime.utcnow())


def prune_spent_download_tokens(now: datetime = None):
    with Session(engine) as session:
        return download_authorizer.prune_redemptions(session, now or datetime.utcnow())


def pull_payment_confirmations(source=None):
    source = source or default_source()
    if source is None:
        return []

    with Session(engine) as session:
        return payment_reconciler.scan_for_confirmations(session, source)


def run_once(now: datetime = None):
    # confirmations first so a payment already sitting at the bank beats the sweep
    try:
        pull_payment_confirmations()
    except UnavailableError:
        logger.warning("Skipping payment pull this round")
    expire_unpaid_orders(now)
    prune_spent_download_tokens(now)


async def run_periodically(interval_seconds: int = None):
    interval = interval_seconds or settings.sweep_interval_seconds
    logger.info(f"Order sweep running every {interval}s")

    while True:
        try:
            await asyncio.to_thread(run_once)
        except Exception:
            logger.exception("Order sweep failed")
        await asyncio.sleep(interval)
