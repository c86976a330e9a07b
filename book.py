from __future__ import annotations

from datetime import datetime

from database import from_iso
from errors import ValidationError
from utils.validators import ISBNValidator, TextValidator


class Book:
    """A catalog title and the number of copies the library owns."""

    def __init__(self, title: str, author: str, isbn: str, quantity: int = 0, id: int | None = None,
                 # Catalog metadata
                 description: str | None = None, publish_year: int | None = None, genre: str | None = None,
                 publisher: str | None = None, page_count: int | None = None, cover_url: str | None = None,
                 subjects: list | None = None, created_at: datetime | str | None = None) -> None:
        self.id = id
        self.title = (title or "").strip()
        self.author = (author or "").strip()
        self.isbn = ISBNValidator.normalize_isbn(isbn)
        self.quantity = quantity

        self.description = description
        self.publish_year = publish_year
        self.genre = genre
        self.publisher = publisher
        self.page_count = page_count
        self.cover_url = cover_url
        self.subjects = list(subjects or [])
        self.created_at = from_iso(created_at)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def validate(self) -> None:
        if not TextValidator.is_non_empty(self.title):
            raise ValidationError("Title is required.")
        if not TextValidator.is_non_empty(self.author):
            raise ValidationError("Author is required.")
        if not ISBNValidator.is_valid_isbn(self.isbn):
            raise ValidationError(f"Invalid ISBN format: {self.isbn or '(empty)'}.")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 0:
            raise ValidationError("Quantity must be a non-negative integer.")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "quantity": self.quantity,
            "description": self.description,
            "publish_year": self.publish_year,
            "genre": self.genre,
            "publisher": self.publisher,
            "page_count": self.page_count,
            "cover_url": self.cover_url,
            "subjects": self.subjects,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data.get("title", ""),
            author=data.get("author", ""),
            isbn=data.get("isbn", ""),
            quantity=data.get("quantity", 0) or 0,
            description=data.get("description"),
            publish_year=data.get("publish_year"),
            genre=data.get("genre"),
            publisher=data.get("publisher"),
            page_count=data.get("page_count"),
            cover_url=data.get("cover_url"),
            subjects=data.get("subjects"),
            created_at=data.get("created_at"),
        )
