from datetime import timedelta

from eligibility import EligibilityChecker
from reservation import ReservationStatus


def test_new_customer_is_eligible(lib, make_customer):
    customer = make_customer()
    assert lib.reservations.eligibility.is_eligible(customer) is True
    assert lib.reservations.is_customer_eligible(customer.id) is True


def test_limit_counts_only_held(lib, make_book, make_customer, now):
    customer = make_customer(max_reservations=1)
    r = lib.reserve(make_book().id, customer.id, now=now)
    assert lib.reservations.is_customer_eligible(customer.id) is False
    assert lib.reservations.eligibility.is_eligible(customer, exclude_reservation_id=r.id) is True

    lib.return_reservation(r.id, now=now + timedelta(days=1))
    assert lib.reservations.is_customer_eligible(customer.id) is True


def test_unpaid_overdue_blocks(lib, make_book, make_customer, now):
    customer = make_customer()
    r = lib.reserve(make_book().id, customer.id, now=now)
    lib.sweep_overdue(now=now + timedelta(days=15))
    assert lib.reservations.get(r.id).status == ReservationStatus.OVERDUE

    assert lib.reservations.is_customer_eligible(customer.id) is False


def test_returned_unpaid_fine_does_not_block(lib, make_book, make_customer, now):
    customer = make_customer()
    r = lib.reserve(make_book().id, customer.id, now=now)
    returned = lib.return_reservation(r.id, now=now + timedelta(days=20))
    assert returned.fine.outstanding

    assert lib.reservations.is_customer_eligible(customer.id) is True


def test_unknown_customer_is_not_eligible(lib):
    assert lib.reservations.is_customer_eligible(12345) is False


def test_lookup_failure_fails_closed(make_customer):
    class BrokenStore:
        def find(self, *args, **kwargs):
            raise RuntimeError("database unavailable")

    checker = EligibilityChecker(BrokenStore())
    assert checker.is_eligible(make_customer()) is False
