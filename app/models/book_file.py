from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime


class BookFile(SQLModel, table=True):
    __tablename__ = "book_file"
    id: Optional[int] = Field(default=None, primary_key=True)
    book_id: int = Field(foreign_key="book.id", index=True)

    file_key: str  # object storage key
    file_type: str
    file_size: int = 0

    # soft delete: downloaded copies stay, new authorizations are refused
    is_deleted: bool = Field(default=False)
    deleted_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
