# app/services/catalog.py
"""Read side of the catalog that checkout consumes. Book and file management live elsewhere."""

from typing import Optional
from sqlmodel import Session

from app.models.book import Book
from app.models.book_file import BookFile


def get_book(session: Session, book_id: int) -> Optional[Book]:
    return session.get(Book, book_id)


def get_book_file(session: Session, file_id: int) -> Optional[BookFile]:
    book_file = session.get(BookFile, file_id)
    if book_file is None or book_file.is_deleted:
        return None
    return book_file
