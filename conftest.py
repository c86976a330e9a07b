import dataclasses
import os
from datetime import datetime, timezone

import pytest

from book import Book
from config import settings
from customer import Customer
from library import Library

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeCatalog:
    """Testlerin ağa çıkmaması için OpenLibraryClient yerine geçer."""

    def __init__(self, metadata=None, error=None):
        self.metadata = metadata or {}
        self.error = error
        self.calls = []

    def lookup_by_isbn(self, isbn):
        self.calls.append(isbn)
        if self.error:
            raise self.error
        return self.metadata.get(isbn)

    def search(self, query, limit=10):
        return []


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def rules():
    # Yerel bir .env beklenen sayıları değiştirmesin diye ödünç kurallarını sabitle
    return dataclasses.replace(settings, loan_period_days=14, renewal_period_days=14, max_renewals=3,
                               fine_per_day=1.0, due_soon_days=7, enable_enrichment=True)


@pytest.fixture
def db_file(tmp_path, request):
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def lib(db_file, catalog, rules):
    # Her test için ayrı bir veritabanı dosyası
    lib = Library(db_file=db_file, catalog=catalog, rules=rules)
    yield lib
    lib.close()
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_book(lib):
    counter = {"n": 0}

    def _make(quantity=1, title="Dune", author="Frank Herbert", isbn=None):
        counter["n"] += 1
        isbn = isbn or f"978000000{counter['n']:04d}"
        return lib.add_book(Book(title=title, author=author, isbn=isbn, quantity=quantity))

    return _make


@pytest.fixture
def make_customer(lib):
    counter = {"n": 0}

    def _make(max_reservations=3, first_name="Ada", last_name="Lovelace"):
        counter["n"] += 1
        return lib.add_customer(Customer(first_name=first_name, last_name=last_name,
                                         email=f"reader{counter['n']}@example.com",
                                         max_reservations=max_reservations))

    return _make
