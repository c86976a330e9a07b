import logging
import sqlite3
from typing import Optional

from customer import Customer
from database import Collection
from reservation import HELD_STATUSES, Fine, ReservationStatus

logger = logging.getLogger(__name__)


class EligibilityChecker:
    """Decides whether a customer may take out another reservation.

    A customer is eligible when they hold fewer reserved/borrowed reservations
    than their ``max_reservations`` and have no overdue reservation with an
    unpaid fine. Any failure while looking this up counts as not eligible.
    """

    def __init__(self, reservations: Collection) -> None:
        self.reservations = reservations

    def is_eligible(self, customer: Customer, *, exclude_reservation_id: Optional[int] = None,
                    conn: Optional[sqlite3.Connection] = None) -> bool:
        try:
            held = self.reservations.find(
                {"customer_id": customer.id, "status": [s.value for s in HELD_STATUSES]}, conn=conn)
            held_count = sum(1 for doc in held if doc["id"] != exclude_reservation_id)
            if held_count >= customer.max_reservations:
                logger.info("Customer %s is at the reservation limit (%d/%d)",
                            customer.id, held_count, customer.max_reservations)
                return False

            overdue = self.reservations.find(
                {"customer_id": customer.id, "status": ReservationStatus.OVERDUE.value}, conn=conn)
            if any(not Fine.from_dict(doc.get("fine")).paid for doc in overdue):
                logger.info("Customer %s has an unpaid overdue reservation", customer.id)
                return False
            return True
        except Exception:
            logger.exception("Eligibility lookup failed for customer %s; treating as not eligible", customer.id)
            return False
