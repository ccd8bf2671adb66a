from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class BookStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class Book(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str

    # integer minor units, snapshotted into orders
    price: int
    status: BookStatus = Field(default=BookStatus.DRAFT)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
