from sqlmodel import SQLModel, Field
from datetime import datetime


class DownloadRedemption(SQLModel, table=True):
    __tablename__ = "download_redemption"

    # one row per spent download token; kept only until the token would have expired
    jti: str = Field(primary_key=True)
    user_id: int = Field(foreign_key="user.id")
    book_id: int = Field(foreign_key="book.id")
    file_id: int = Field(foreign_key="book_file.id")
    expires_at: datetime = Field(index=True)
    redeemed_at: datetime = Field(default_factory=datetime.utcnow)
