from app.models.user import User
from app.models.book import Book, BookStatus
from app.models.book_file import BookFile
from app.models.coupon import Coupon, DiscountKind
from app.models.order import Order
from app.models.order_event import OrderEvent
from app.models.entitlement import Entitlement
from app.models.payment import PaymentConfirmation, ConfirmationOutcome
from app.models.download_redemption import DownloadRedemption

# add ALL models here
