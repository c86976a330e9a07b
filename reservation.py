from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from database import from_iso
from errors import InvalidTransition

SECONDS_PER_DAY = 24 * 60 * 60
# Upper bound on renewals; the MAX_RENEWALS setting can only lower it
MAX_RENEWALS = 3


class ReservationStatus(str, Enum):
    RESERVED = "reserved"
    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"

    @property
    def is_held(self) -> bool:
        """Currently held within the loan period; counts against the customer limit."""
        return self in HELD_STATUSES


ACTIVE_STATUSES = frozenset({ReservationStatus.RESERVED, ReservationStatus.BORROWED, ReservationStatus.OVERDUE})
HELD_STATUSES = frozenset({ReservationStatus.RESERVED, ReservationStatus.BORROWED})


class Action(str, Enum):
    CHECKOUT = "checkout"
    RENEW = "renew"
    MARK_OVERDUE = "mark_overdue"
    RETURN = "return"
    CANCEL = "cancel"


# Anything not listed here is an illegal transition.
TRANSITIONS: Dict[ReservationStatus, Dict[Action, ReservationStatus]] = {
    ReservationStatus.RESERVED: {
        Action.CHECKOUT: ReservationStatus.BORROWED,
        Action.RENEW: ReservationStatus.RESERVED,
        Action.MARK_OVERDUE: ReservationStatus.OVERDUE,
        Action.RETURN: ReservationStatus.RETURNED,
        Action.CANCEL: ReservationStatus.CANCELLED,
    },
    ReservationStatus.BORROWED: {
        Action.RENEW: ReservationStatus.BORROWED,
        Action.MARK_OVERDUE: ReservationStatus.OVERDUE,
        Action.RETURN: ReservationStatus.RETURNED,
        Action.CANCEL: ReservationStatus.CANCELLED,
    },
    ReservationStatus.OVERDUE: {
        Action.RETURN: ReservationStatus.RETURNED,
        Action.CANCEL: ReservationStatus.CANCELLED,
    },
    ReservationStatus.RETURNED: {},
    ReservationStatus.CANCELLED: {},
}


def next_status(current: ReservationStatus, action: Action) -> ReservationStatus:
    """Return the status ``action`` leads to from ``current``, or raise InvalidTransition."""
    current = ReservationStatus(current)
    try:
        return TRANSITIONS[current][Action(action)]
    except KeyError:
        raise InvalidTransition(
            f"Cannot {Action(action).value.replace('_', ' ')} a reservation that is {current.value}."
        ) from None


def _ceil_days(seconds: float) -> int:
    return math.ceil(seconds / SECONDS_PER_DAY)


@dataclass
class Fine:
    amount: float = 0.0
    paid: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {"amount": self.amount, "paid": self.paid, "reason": self.reason}

    @staticmethod
    def from_dict(data: Optional[dict]) -> "Fine":
        data = data or {}
        return Fine(
            amount=float(data.get("amount") or 0),
            paid=bool(data.get("paid", False)),
            reason=data.get("reason"),
        )

    @property
    def outstanding(self) -> bool:
        return self.amount > 0 and not self.paid


class Reservation:
    """One customer's hold on one copy of a book."""

    def __init__(self, book_id: int, customer_id: int, reservation_date: datetime | str,
                 due_date: datetime | str, return_date: datetime | str | None = None,
                 status: ReservationStatus | str = ReservationStatus.RESERVED, renewal_count: int = 0,
                 fine: Fine | dict | None = None, notes: str | None = None, id: int | None = None,
                 version: int = 0, created_at: datetime | str | None = None) -> None:
        self.id = id
        self.book_id = book_id
        self.customer_id = customer_id
        self.reservation_date = from_iso(reservation_date)
        self.due_date = from_iso(due_date)
        self.return_date = from_iso(return_date)
        self.status = ReservationStatus(status)
        self.renewal_count = renewal_count
        self.fine = fine if isinstance(fine, Fine) else Fine.from_dict(fine)
        self.notes = notes
        self.version = version
        self.created_at = from_iso(created_at)

    # Derived values; recomputed on every read, never stored.
    def days_overdue(self, now: Optional[datetime] = None) -> int:
        if self.status != ReservationStatus.OVERDUE or self.return_date is not None:
            return 0
        now = now or datetime.now(timezone.utc)
        return max(0, _ceil_days((now - self.due_date).total_seconds()))

    def loan_duration(self, now: Optional[datetime] = None) -> int:
        end = self.return_date or now or datetime.now(timezone.utc)
        return max(0, _ceil_days((end - self.reservation_date).total_seconds()))

    def accrued_fine(self, fine_per_day: float, now: Optional[datetime] = None) -> float:
        """Fine the customer would owe if the book came back at ``now``."""
        if self.status == ReservationStatus.RETURNED:
            return self.fine.amount
        return round(self.days_overdue(now) * fine_per_day, 2)

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "customer_id": self.customer_id,
            "reservation_date": self.reservation_date,
            "due_date": self.due_date,
            "return_date": self.return_date,
            "status": self.status.value,
            "renewal_count": self.renewal_count,
            "fine": self.fine.to_dict(),
            "notes": self.notes,
            "version": self.version,
            "created_at": self.created_at,
        }

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        data = self.to_record()
        data["days_overdue"] = self.days_overdue(now)
        data["loan_duration"] = self.loan_duration(now)
        return data

    @staticmethod
    def from_dict(data: dict) -> "Reservation":
        return Reservation(
            id=data.get("id"),
            book_id=data["book_id"],
            customer_id=data["customer_id"],
            reservation_date=data["reservation_date"],
            due_date=data["due_date"],
            return_date=data.get("return_date"),
            status=data.get("status") or ReservationStatus.RESERVED,
            renewal_count=data.get("renewal_count", 0) or 0,
            fine=data.get("fine"),
            notes=data.get("notes"),
            version=data.get("version", 0) or 0,
            created_at=data.get("created_at"),
        )
