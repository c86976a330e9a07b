import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import database
from availability import availability_status, available_quantity
from book import Book
from config import Settings, settings as default_settings
from customer import Customer
from database import (
    books_collection,
    customers_collection,
    initialize_database,
    reservations_collection,
    transaction,
)
from errors import Conflict, NotFound, ValidationError
from reservation import ACTIVE_STATUSES, HELD_STATUSES, Reservation, ReservationStatus
from reservations import ReservationService
from services.open_library import OpenLibraryClient
from utils.validators import ISBNValidator

logger = logging.getLogger(__name__)

BOOK_FIELDS = ("title", "author", "isbn", "quantity", "description", "publish_year", "genre",
               "publisher", "page_count", "cover_url", "subjects")
CUSTOMER_FIELDS = ("first_name", "last_name", "email", "phone", "address", "status",
                   "max_reservations", "notes")
# Fields that must keep a value on update
REQUIRED_BOOK_FIELDS = ("title", "author", "isbn", "quantity")
REQUIRED_CUSTOMER_FIELDS = ("first_name", "last_name", "email", "status", "max_reservations")
RECENT_BOOKS = 6


def _reject_nulls(fields: Dict[str, Any], required: Tuple[str, ...]) -> None:
    nulls = sorted(name for name in required if name in fields and fields[name] is None)
    if nulls:
        raise ValidationError(f"Field(s) cannot be empty: {', '.join(nulls)}.")


class Library:
    """Manages the catalog, the customers and their reservations."""

    def __init__(self, db_file: Optional[str] = None, catalog: Optional[OpenLibraryClient] = None,
                 rules: Optional[Settings] = None) -> None:
        self.db_file = db_file or database.DATABASE_FILE
        self.rules = rules or default_settings
        initialize_database(self.db_file)  # Ensure DB and tables exist

        self.book_store = books_collection(self.db_file)
        self.customer_store = customers_collection(self.db_file)
        self.reservation_store = reservations_collection(self.db_file)
        self.catalog = catalog or OpenLibraryClient()
        self.reservations = ReservationService(self.book_store, self.customer_store, self.reservation_store,
                                               db_file=self.db_file, rules=self.rules)

    # ------------------------- Books ------------------------- #
    def add_book(self, book: Book, enrich: bool = False) -> Book:
        """Add a pre-constructed Book. Duplicate ISBNs raise DuplicateKey.

        With ``enrich``, missing catalog fields are filled from Open Library; a
        failed lookup never prevents the book from being saved.
        """
        book.validate()
        if enrich and self.rules.enable_enrichment:
            self._enrich(book)
        book.created_at = book.created_at or datetime.now(timezone.utc)
        book.id = self.book_store.insert(book.to_dict())
        logger.info("Book added: %s", book)
        return book

    def add_book_by_isbn(self, isbn: str, quantity: int = 1) -> Book:
        """Fetch metadata from Open Library by ISBN, create and add the book."""
        isbn = ISBNValidator.normalize_isbn(isbn)
        if not isbn:
            raise ValidationError("ISBN cannot be empty.")
        if not ISBNValidator.is_valid_isbn(isbn):
            raise ValidationError("Invalid ISBN format.")

        metadata = self.catalog.lookup_by_isbn(isbn)
        if metadata is None:
            raise NotFound("Book not found.")

        book = Book(title=metadata.title, author=metadata.author, isbn=isbn, quantity=quantity,
                    description=metadata.description, publish_year=metadata.publish_year,
                    publisher=metadata.publisher, page_count=metadata.page_count,
                    cover_url=metadata.cover_url, subjects=metadata.subjects)
        return self.add_book(book)

    def get_book(self, book_id: int) -> Book:
        return Book.from_dict(self.book_store.find_by_id(book_id))

    def find_book(self, isbn: str) -> Optional[Book]:
        doc = self.book_store.find_one({"isbn": ISBNValidator.normalize_isbn(isbn)})
        return Book.from_dict(doc) if doc else None

    def list_books(self) -> List[Book]:
        return [Book.from_dict(d) for d in self.book_store.find(order_by="title")]

    def search_books(self, query: str) -> List[Book]:
        """Search for books by title, author or ISBN."""
        query = (query or "").strip()
        if not query:
            return self.list_books()
        docs = self.book_store.find({"$or": [
            {"title": {"$like": query}},
            {"author": {"$like": query}},
            {"isbn": {"$like": ISBNValidator.normalize_isbn(query)}},
        ]}, order_by="title")
        return [Book.from_dict(d) for d in docs]

    def update_book(self, book_id: int, **fields: Any) -> Book:
        unknown = set(fields) - set(BOOK_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown book field(s): {', '.join(sorted(unknown))}.")
        _reject_nulls(fields, REQUIRED_BOOK_FIELDS)
        with transaction(self.db_file) as conn:
            current = self.book_store.find_by_id(book_id, conn=conn)
            updated = Book.from_dict({**current, **fields})
            updated.validate()
            if "quantity" in fields:
                active = self.reservations.active_count_for_book(book_id, conn=conn)
                if updated.quantity < active:
                    raise Conflict(
                        f"Quantity cannot drop below the {active} copies currently reserved or on loan.")
            patch = {k: v for k, v in updated.to_dict().items() if k in fields}
            doc = self.book_store.update(book_id, patch, conn=conn)
        return Book.from_dict(doc)

    def remove_book(self, book_id: int) -> bool:
        """Delete a book. Books with active reservations cannot be deleted."""
        with transaction(self.db_file) as conn:
            active = self.reservations.active_count_for_book(book_id, conn=conn)
            if active:
                raise Conflict(f"Book {book_id} has {active} active reservation(s) and cannot be deleted.")
            removed = self.book_store.delete(book_id, conn=conn)
        if removed:
            logger.info("Book %s removed", book_id)
        return removed

    def book_view(self, book: Book, active_count: Optional[int] = None) -> Dict[str, Any]:
        """Book fields plus availability, computed at read time."""
        if active_count is None:
            active_count = self.reservations.active_count_for_book(book.id)
        data = book.to_dict()
        data["active_reservations"] = active_count
        data["available_quantity"] = available_quantity(book, active_count)
        data["availability_status"] = availability_status(book, active_count).value
        return data

    def list_book_views(self, query: Optional[str] = None) -> List[Dict[str, Any]]:
        books = self.search_books(query) if query else self.list_books()
        counts = self._active_counts_by_book()
        return [self.book_view(b, counts.get(b.id, 0)) for b in books]

    def get_statistics(self) -> Dict[str, Any]:
        """Get library statistics."""
        books = self.list_books()
        return {
            "total_books": len(books),
            "total_copies": sum(b.quantity for b in books),
            "unique_authors": len({b.author for b in books}),
        }

    # ------------------------- Customers ------------------------- #
    def add_customer(self, customer: Customer) -> Customer:
        customer.validate()
        now = datetime.now(timezone.utc)
        customer.membership_date = customer.membership_date or now
        customer.created_at = customer.created_at or now
        customer.id = self.customer_store.insert(customer.to_dict())
        logger.info("Customer added: %s <%s>", customer.full_name, customer.email)
        return customer

    def get_customer(self, customer_id: int) -> Customer:
        return Customer.from_dict(self.customer_store.find_by_id(customer_id))

    def list_customers(self, search: Optional[str] = None, page: int = 1,
                       limit: Optional[int] = None) -> Tuple[List[Customer], int]:
        limit = max(1, min(limit or self.rules.default_page_size, self.rules.max_page_size))
        page = max(1, page)
        filter: Dict[str, Any] = {}
        if search and search.strip():
            term = search.strip()
            filter = {"$or": [
                {"first_name": {"$like": term}},
                {"last_name": {"$like": term}},
                {"email": {"$like": term}},
                {"phone": {"$like": term}},
            ]}
        total = self.customer_store.count_where(filter)
        docs = self.customer_store.find(filter, order_by=["last_name", "first_name"], limit=limit,
                                        offset=(page - 1) * limit)
        return [Customer.from_dict(d) for d in docs], total

    def update_customer(self, customer_id: int, **fields: Any) -> Customer:
        unknown = set(fields) - set(CUSTOMER_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown customer field(s): {', '.join(sorted(unknown))}.")
        _reject_nulls(fields, REQUIRED_CUSTOMER_FIELDS)
        current = self.customer_store.find_by_id(customer_id)
        updated = Customer.from_dict({**current, **fields})
        updated.validate()
        patch = {k: v for k, v in updated.to_dict().items() if k in fields}
        return Customer.from_dict(self.customer_store.update(customer_id, patch))

    def remove_customer(self, customer_id: int) -> bool:
        """Delete a customer. Customers with active reservations cannot be deleted."""
        with transaction(self.db_file) as conn:
            active = self.reservation_store.count_where(
                {"customer_id": customer_id, "status": [s.value for s in ACTIVE_STATUSES]}, conn=conn)
            if active:
                raise Conflict(
                    f"Customer {customer_id} has {active} active reservation(s) and cannot be deleted.")
            removed = self.customer_store.delete(customer_id, conn=conn)
        if removed:
            logger.info("Customer %s removed", customer_id)
        return removed

    def customer_view(self, customer: Customer) -> Dict[str, Any]:
        data = customer.to_dict()
        data["full_name"] = customer.full_name
        return data

    def customer_summary(self, customer_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """A customer with their reservations and reservation/fine totals."""
        customer = self.get_customer(customer_id)
        docs = self.reservation_store.find({"customer_id": customer_id}, order_by=["-reservation_date", "-id"])
        reservations = [Reservation.from_dict(d) for d in docs]
        return {
            "customer": self.customer_view(customer),
            "reservations": [self.reservation_view(r, now) for r in reservations],
            "stats": {
                "total_reservations": len(reservations),
                "active_reservations": sum(1 for r in reservations if r.status.is_held),
                "overdue_reservations": sum(1 for r in reservations if r.status == ReservationStatus.OVERDUE),
                "total_fines": round(sum(r.fine.amount for r in reservations), 2),
                "unpaid_fines": round(sum(r.fine.amount for r in reservations if r.fine.outstanding), 2),
            },
            "eligible": self.reservations.is_customer_eligible(customer.id),
        }

    # ------------------------- Reservations ------------------------- #
    def reserve(self, book_id: int, customer_id: int, due_date: Optional[datetime] = None,
                notes: Optional[str] = None, now: Optional[datetime] = None) -> Reservation:
        return self.reservations.create(book_id, customer_id, due_date=due_date, notes=notes, now=now)

    def checkout(self, reservation_id: int) -> Reservation:
        return self.reservations.checkout(reservation_id)

    def renew(self, reservation_id: int) -> Reservation:
        return self.reservations.renew(reservation_id)

    def return_reservation(self, reservation_id: int, now: Optional[datetime] = None) -> Reservation:
        return self.reservations.return_reservation(reservation_id, now=now)

    def cancel_reservation(self, reservation_id: int) -> Reservation:
        return self.reservations.cancel(reservation_id)

    def pay_fine(self, reservation_id: int) -> Reservation:
        return self.reservations.pay_fine(reservation_id)

    def sweep_overdue(self, now: Optional[datetime] = None) -> List[Reservation]:
        return self.reservations.mark_overdue(now=now)

    def available_quantity(self, book_id: int) -> int:
        book = self.get_book(book_id)
        return available_quantity(book, self.reservations.active_count_for_book(book_id))

    def reservation_view(self, reservation: Reservation, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Reservation fields, derived values and a short summary of the book and customer."""
        data = reservation.to_dict(now)
        data["accrued_fine"] = reservation.accrued_fine(self.rules.fine_per_day, now)
        book = self.book_store.find_one({"id": reservation.book_id})
        customer = self.customer_store.find_one({"id": reservation.customer_id})
        data["book"] = {k: book[k] for k in ("title", "author", "isbn", "cover_url")} if book else None
        data["customer"] = ({"full_name": f"{customer['first_name']} {customer['last_name']}",
                             "email": customer["email"], "phone": customer["phone"]} if customer else None)
        return data

    # ------------------------- Dashboard ------------------------- #
    def get_dashboard(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Read-only rollup for the front page."""
        books = self.list_books()
        counts = self._active_counts_by_book()
        held = [s.value for s in HELD_STATUSES]
        recent = self.book_store.find(order_by=["-created_at", "-id"], limit=RECENT_BOOKS)
        return {
            "total_books": len(books),
            "available_books": sum(1 for b in books if available_quantity(b, counts.get(b.id, 0)) > 0),
            "active_reservations": self.reservation_store.count_where({"status": held}),
            "overdue_reservations": self.reservation_store.count_where(
                {"status": ReservationStatus.OVERDUE.value}),
            "upcoming_due": [self.reservation_view(r, now) for r in self.reservations.upcoming_due(now)],
            "recent_books": [Book.from_dict(d).to_dict() for d in recent],
        }

    def _active_counts_by_book(self) -> Counter:
        docs = self.reservation_store.find({"status": [s.value for s in ACTIVE_STATUSES]})
        return Counter(d["book_id"] for d in docs)

    # ------------------------- Enrichment ------------------------- #
    def _enrich(self, book: Book) -> None:
        """Fill empty catalog fields from Open Library; failures only log."""
        try:
            metadata = self.catalog.lookup_by_isbn(book.isbn)
        except Exception:
            logger.warning("Catalog enrichment failed for ISBN %s; saving without it", book.isbn, exc_info=True)
            return
        if metadata is None:
            return
        for name in ("description", "publish_year", "publisher", "page_count", "cover_url"):
            if getattr(book, name) in (None, "") and getattr(metadata, name) is not None:
                setattr(book, name, getattr(metadata, name))
        if not book.subjects and metadata.subjects:
            book.subjects = list(metadata.subjects)

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None
