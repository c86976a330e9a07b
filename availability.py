"""Book availability, derived from stock and active reservations.

These are pure functions of the current counts. The result is never stored on
the book record, because reservations change independently of the book.
"""
from enum import Enum

from book import Book

# Up to this many free copies the book shows as "limited"
LIMITED_THRESHOLD = 2


class AvailabilityStatus(str, Enum):
    UNAVAILABLE = "unavailable"
    LIMITED = "limited"
    AVAILABLE = "available"


def available_quantity(book: Book, active_reservation_count: int) -> int:
    return book.quantity - active_reservation_count


def is_available(book: Book, active_reservation_count: int) -> bool:
    return available_quantity(book, active_reservation_count) > 0


def availability_status(book: Book, active_reservation_count: int) -> AvailabilityStatus:
    available = available_quantity(book, active_reservation_count)
    if available <= 0:
        return AvailabilityStatus.UNAVAILABLE
    if available <= LIMITED_THRESHOLD:
        return AvailabilityStatus.LIMITED
    return AvailabilityStatus.AVAILABLE
