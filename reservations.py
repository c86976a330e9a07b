import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from availability import is_available
from book import Book
from config import Settings, settings as default_settings
from customer import Customer
from database import Collection, from_iso, transaction
from eligibility import EligibilityChecker
from errors import Conflict, InvalidTransition, NotEligible, RenewalLimitExceeded, Unavailable, ValidationError
from reservation import (
    ACTIVE_STATUSES,
    HELD_STATUSES,
    MAX_RENEWALS,
    SECONDS_PER_DAY,
    Action,
    Fine,
    Reservation,
    ReservationStatus,
    next_status,
)
from utils.validators import TextValidator

logger = logging.getLogger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return from_iso(now) if now is not None else datetime.now(timezone.utc)


class ReservationService:
    """Reservation lifecycle: create, check out, renew, mark overdue, return, cancel.

    Status changes go through the transition table in ``reservation.py`` and are
    written with a conditional update on the previous status and version, so two
    requests racing on the same reservation cannot both succeed; the loser gets
    :class:`Conflict`.
    """

    def __init__(self, books: Collection, customers: Collection, reservations: Collection,
                 db_file: Optional[str] = None, rules: Optional[Settings] = None) -> None:
        self.books = books
        self.customers = customers
        self.reservations = reservations
        self.db_file = db_file
        self.rules = rules or default_settings
        self.eligibility = EligibilityChecker(reservations)

    # ------------------------- Queries ------------------------- #
    def get(self, reservation_id: int) -> Reservation:
        return Reservation.from_dict(self.reservations.find_by_id(reservation_id))

    def active_count_for_book(self, book_id: int, conn=None) -> int:
        return self.reservations.count_where(
            {"book_id": book_id, "status": [s.value for s in ACTIVE_STATUSES]}, conn=conn)

    def is_customer_eligible(self, customer_id: int) -> bool:
        try:
            customer = Customer.from_dict(self.customers.find_by_id(customer_id))
        except Exception:
            logger.exception("Could not load customer %s; treating as not eligible", customer_id)
            return False
        return self.eligibility.is_eligible(customer)

    def list_reservations(self, *, status: Optional[str] = None, customer_id: Optional[int] = None,
                          book_id: Optional[int] = None, page: int = 1,
                          limit: Optional[int] = None) -> Tuple[List[Reservation], int]:
        """Return one page of reservations (newest first) and the total match count."""
        limit = max(1, min(limit or self.rules.default_page_size, self.rules.max_page_size))
        page = max(1, page)
        filter: Dict[str, Any] = {}
        if status:
            try:
                filter["status"] = ReservationStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown reservation status '{status}'.") from None
        if customer_id is not None:
            filter["customer_id"] = customer_id
        if book_id is not None:
            filter["book_id"] = book_id
        total = self.reservations.count_where(filter)
        docs = self.reservations.find(filter, order_by=["-reservation_date", "-id"], limit=limit,
                                      offset=(page - 1) * limit)
        return [Reservation.from_dict(d) for d in docs], total

    def list_overdue(self) -> List[Reservation]:
        docs = self.reservations.find({"status": ReservationStatus.OVERDUE.value}, order_by="due_date")
        return [Reservation.from_dict(d) for d in docs]

    def upcoming_due(self, now: Optional[datetime] = None, days: Optional[int] = None,
                     limit: int = 5) -> List[Reservation]:
        """Held reservations falling due between now and ``days`` from now, soonest first."""
        now = _now(now)
        horizon = now + timedelta(days=self.rules.due_soon_days if days is None else days)
        docs = self.reservations.find(
            {"status": [s.value for s in HELD_STATUSES], "due_date": {"$gte": now, "$lte": horizon}},
            order_by="due_date", limit=limit)
        return [Reservation.from_dict(d) for d in docs]

    # ------------------------- Lifecycle ------------------------- #
    def create(self, book_id: int, customer_id: int, due_date: Optional[datetime] = None,
               notes: Optional[str] = None, now: Optional[datetime] = None) -> Reservation:
        now = _now(now)
        due = from_iso(due_date) if due_date is not None else now + timedelta(days=self.rules.loan_period_days)
        if not TextValidator.within_length(notes, 300):
            raise ValidationError("Notes cannot exceed 300 characters.")

        # Stock and eligibility are checked and the row inserted under one write
        # lock, so concurrent creates cannot oversubscribe a book.
        with transaction(self.db_file) as conn:
            book = Book.from_dict(self.books.find_by_id(book_id, conn=conn))
            if not is_available(book, self.active_count_for_book(book_id, conn=conn)):
                raise Unavailable(f"'{book.title}' has no copies available for reservation.")

            customer = Customer.from_dict(self.customers.find_by_id(customer_id, conn=conn))
            if not self.eligibility.is_eligible(customer, conn=conn):
                raise NotEligible(
                    f"{customer.full_name} is not eligible for a reservation "
                    "(reservation limit reached or unpaid overdue fine).")

            reservation = Reservation(book_id=book.id, customer_id=customer.id, reservation_date=now,
                                      due_date=due, notes=notes, created_at=now)
            reservation.id = self.reservations.insert(reservation.to_record(), conn=conn)

        logger.info("Reservation %s created: book %s for customer %s, due %s",
                    reservation.id, book_id, customer_id, due.date())
        return reservation

    def checkout(self, reservation_id: int) -> Reservation:
        """Hand a reserved copy to the customer."""
        reservation = self.get(reservation_id)
        return self._apply(reservation, Action.CHECKOUT, {})

    def renew(self, reservation_id: int) -> Reservation:
        reservation = self.get(reservation_id)
        # Only reserved/borrowed reservations may be renewed
        next_status(reservation.status, Action.RENEW)
        if reservation.renewal_count >= min(self.rules.max_renewals, MAX_RENEWALS):
            raise RenewalLimitExceeded(
                f"Reservation {reservation_id} has already been renewed {reservation.renewal_count} times.")

        customer = Customer.from_dict(self.customers.find_by_id(reservation.customer_id))
        # The reservation being renewed is already held; it does not count against the limit twice
        if not self.eligibility.is_eligible(customer, exclude_reservation_id=reservation.id):
            raise NotEligible(f"{customer.full_name} is not eligible for renewal.")

        patch = {
            "due_date": reservation.due_date + timedelta(days=self.rules.renewal_period_days),
            "renewal_count": reservation.renewal_count + 1,
        }
        return self._apply(reservation, Action.RENEW, patch)

    def mark_overdue(self, now: Optional[datetime] = None) -> List[Reservation]:
        """Move every held reservation past its due date to overdue.

        Re-running is harmless: already-overdue reservations are not candidates
        and no fine is accrued here.
        """
        now = _now(now)
        candidates = self.reservations.find({
            "status": [s.value for s in HELD_STATUSES],
            "due_date": {"$lt": now},
            "return_date": None,
        }, order_by="due_date")

        swept: List[Reservation] = []
        for doc in candidates:
            try:
                swept.append(self._apply(Reservation.from_dict(doc), Action.MARK_OVERDUE, {}))
            except Conflict:
                # returned/renewed/cancelled meanwhile; the next sweep re-evaluates it
                logger.info("Reservation %s changed during overdue sweep; skipped", doc["id"])
        if swept:
            logger.info("Overdue sweep marked %d reservation(s)", len(swept))
        return swept

    def return_reservation(self, reservation_id: int, now: Optional[datetime] = None) -> Reservation:
        now = _now(now)
        reservation = self.get(reservation_id)
        next_status(reservation.status, Action.RETURN)

        patch: Dict[str, Any] = {"return_date": now}
        overdue = reservation.status == ReservationStatus.OVERDUE or reservation.due_date < now
        if overdue:
            days = max(0, math.ceil((now - reservation.due_date).total_seconds() / SECONDS_PER_DAY))
            if days > 0:
                fine = Fine(amount=round(days * self.rules.fine_per_day, 2), paid=False,
                            reason=f"Overdue by {days} days")
                patch["fine"] = fine.to_dict()
        returned = self._apply(reservation, Action.RETURN, patch)
        if returned.fine.outstanding:
            logger.info("Reservation %s returned with fine %.2f", reservation_id, returned.fine.amount)
        return returned

    def cancel(self, reservation_id: int) -> Reservation:
        reservation = self.get(reservation_id)
        return self._apply(reservation, Action.CANCEL, {})

    def pay_fine(self, reservation_id: int) -> Reservation:
        reservation = self.get(reservation_id)
        if not reservation.fine.outstanding:
            raise InvalidTransition(f"Reservation {reservation_id} has no unpaid fine.")
        fine = Fine(amount=reservation.fine.amount, paid=True, reason=reservation.fine.reason)
        doc = self.reservations.update(reservation.id, {"fine": fine.to_dict()},
                                       expected={"version": reservation.version})
        logger.info("Fine of %.2f paid on reservation %s", fine.amount, reservation_id)
        return Reservation.from_dict(doc)

    def _apply(self, reservation: Reservation, action: Action, patch: Dict[str, Any]) -> Reservation:
        target = next_status(reservation.status, action)
        patch = dict(patch, status=target.value)
        doc = self.reservations.update(
            reservation.id, patch,
            expected={"status": reservation.status.value, "version": reservation.version})
        logger.info("Reservation %s: %s -> %s", reservation.id, reservation.status.value, target.value)
        return Reservation.from_dict(doc)
