from datetime import timedelta

import pytest

from book import Book
from customer import Customer
from errors import Conflict, DuplicateKey, ExternalServiceError, NotFound, ValidationError
from library import Library
from services.open_library import BookMetadata


def test_add_list_and_find(lib):
    assert lib.list_books() == []

    book = Book("Ulysses", "James Joyce", "978-0-19-953567-5", quantity=2)
    lib.add_book(book)

    assert book.id is not None
    found = lib.find_book("9780199535675")
    assert found is not None
    assert found.title == "Ulysses"
    assert [b.title for b in lib.list_books()] == ["Ulysses"]


def test_add_duplicate_isbn(lib):
    lib.add_book(Book("Test Book", "Test Author", "1234567890"))

    with pytest.raises(DuplicateKey, match="1234567890"):
        lib.add_book(Book("Other Book", "Other Author", "1234567890"))

    assert len(lib.list_books()) == 1


@pytest.mark.parametrize("kwargs", [
    {"title": "", "author": "A", "isbn": "1234567890"},
    {"title": "T", "author": " ", "isbn": "1234567890"},
    {"title": "T", "author": "A", "isbn": "12345"},
    {"title": "T", "author": "A", "isbn": "1234567890", "quantity": -1},
])
def test_add_invalid_book(lib, kwargs):
    with pytest.raises(ValidationError):
        lib.add_book(Book(**kwargs))
    assert lib.list_books() == []


def test_persistence(lib, db_file, catalog):
    lib.add_book(Book("Sapiens", "Yuval Noah Harari", "9780099590088", subjects=["History"]))

    # A new instance reads the same SQLite file
    lib2 = Library(db_file=db_file, catalog=catalog)
    found = lib2.find_book("9780099590088")
    assert found.title == "Sapiens"
    assert found.subjects == ["History"]
    assert found.created_at is not None


def test_search_books(lib):
    lib.add_book(Book("Dune", "Frank Herbert", "9780441013593"))
    lib.add_book(Book("Emma", "Jane Austen", "9780141439587"))

    assert [b.title for b in lib.search_books("herb")] == ["Dune"]
    assert [b.title for b in lib.search_books("978-0141")] == ["Emma"]
    assert len(lib.search_books("")) == 2


def test_update_book(lib):
    book = lib.add_book(Book("Old Title", "Old Author", "1112223334"))

    updated = lib.update_book(book.id, title="New Title")
    assert updated.title == "New Title"
    assert updated.author == "Old Author"
    assert lib.get_book(book.id).title == "New Title"


def test_update_book_rejects_bad_values(lib):
    book = lib.add_book(Book("Title", "Author", "1112223334"))
    with pytest.raises(ValidationError):
        lib.update_book(book.id, quantity=-2)
    with pytest.raises(ValidationError):
        lib.update_book(book.id, shelf="A3")
    with pytest.raises(NotFound):
        lib.update_book(999, title="Nope")


@pytest.mark.parametrize("field", ["quantity", "title", "author", "isbn"])
def test_update_book_rejects_null_required_field(lib, field):
    book = lib.add_book(Book("Title", "Author", "1112223334", quantity=5))
    with pytest.raises(ValidationError, match=field):
        lib.update_book(book.id, **{field: None})

    stored = lib.get_book(book.id)
    assert stored.quantity == 5
    assert stored.title == "Title"


def test_update_book_allows_clearing_optional_field(lib):
    book = lib.add_book(Book("Title", "Author", "1112223334", description="Old blurb"))
    assert lib.update_book(book.id, description=None).description is None


def test_update_customer_rejects_null_required_field(lib):
    customer = lib.add_customer(Customer("Ada", "Lovelace", "ada@example.com", max_reservations=4))
    with pytest.raises(ValidationError):
        lib.update_customer(customer.id, status=None)
    assert lib.get_customer(customer.id).max_reservations == 4


def test_search_treats_wildcards_literally(lib):
    lib.add_book(Book("100% Healthy", "Someone", "1111111111"))
    lib.add_book(Book("1000 Places", "Someone Else", "2222222222"))
    lib.add_book(Book("snake_case", "Coder", "3333333333"))
    lib.add_book(Book("snakeXcase", "Coder", "4444444444"))

    assert [b.title for b in lib.search_books("100%")] == ["100% Healthy"]
    assert [b.title for b in lib.search_books("e_c")] == ["snake_case"]
    lib.add_customer(Customer("Ada", "Lovelace", "ada@example.com"))
    customers, total = lib.list_customers("%")
    assert total == 0 and customers == []


def test_update_quantity_below_active_reservations(lib, make_book, make_customer, now):
    book = make_book(quantity=2)
    lib.reserve(book.id, make_customer().id, now=now)
    lib.reserve(book.id, make_customer().id, now=now)

    with pytest.raises(Conflict):
        lib.update_book(book.id, quantity=1)
    assert lib.update_book(book.id, quantity=5).quantity == 5


def test_remove_book(lib):
    book = lib.add_book(Book("Test", "Author", "1234567890"))
    assert lib.remove_book(book.id) is True
    assert lib.remove_book(book.id) is False


def test_remove_book_with_active_reservation(lib, make_book, make_customer, now):
    book = make_book()
    r = lib.reserve(book.id, make_customer().id, now=now)

    with pytest.raises(Conflict):
        lib.remove_book(book.id)

    lib.return_reservation(r.id, now=now)
    assert lib.remove_book(book.id) is True


def test_book_view_availability(lib, make_book, make_customer, now):
    book = make_book(quantity=3)
    assert lib.book_view(book)["availability_status"] == "available"

    lib.reserve(book.id, make_customer().id, now=now)
    view = lib.book_view(book)
    assert view["available_quantity"] == 2
    assert view["availability_status"] == "limited"
    assert view["active_reservations"] == 1


def test_statistics(lib):
    lib.add_book(Book("A", "Author One", "1111111111", quantity=2))
    lib.add_book(Book("B", "Author One", "2222222222", quantity=3))
    assert lib.get_statistics() == {"total_books": 2, "total_copies": 5, "unique_authors": 1}


# ------------------------- Open Library ------------------------- #
def test_add_book_by_isbn(lib, catalog):
    catalog.metadata["9780321765723"] = BookMetadata(
        isbn="9780321765723", title="The Lord of the Rings", authors=["J.R.R. Tolkien"],
        publish_year=2012, publisher="Houghton", subjects=["Fantasy"])

    book = lib.add_book_by_isbn("978-0321765723", quantity=2)

    assert book.title == "The Lord of the Rings"
    assert book.author == "J.R.R. Tolkien"
    assert book.quantity == 2
    assert lib.find_book("9780321765723").publish_year == 2012


def test_add_book_by_isbn_not_found(lib):
    with pytest.raises(NotFound, match="Book not found."):
        lib.add_book_by_isbn("0000000000")


def test_add_book_by_isbn_invalid(lib, catalog):
    with pytest.raises(ValidationError):
        lib.add_book_by_isbn("abc")
    assert catalog.calls == []


def test_enrichment_fills_missing_fields(lib, catalog):
    catalog.metadata["9780441013593"] = BookMetadata(
        isbn="9780441013593", title="Dune (Deluxe)", authors=["Someone Else"],
        description="Spice.", page_count=896, publisher="Ace")

    book = lib.add_book(Book("Dune", "Frank Herbert", "9780441013593", publisher="Chilton"), enrich=True)

    # Supplied fields win; only empty ones are filled
    assert book.title == "Dune"
    assert book.author == "Frank Herbert"
    assert book.publisher == "Chilton"
    assert book.description == "Spice."
    assert book.page_count == 896


@pytest.mark.parametrize("error", [ExternalServiceError("timeout"), RuntimeError("boom")])
def test_enrichment_failure_does_not_block_save(lib, catalog, error):
    catalog.error = error
    book = lib.add_book(Book("Dune", "Frank Herbert", "9780441013593"), enrich=True)
    assert book.id is not None
    assert lib.find_book("9780441013593").description is None


# ------------------------- Customers ------------------------- #
def test_add_customer(lib):
    customer = lib.add_customer(Customer("Ada", "Lovelace", " Ada@Example.com ", phone="+90 555 123 4567",
                                         address={"city": "Istanbul"}))
    stored = lib.get_customer(customer.id)
    assert stored.email == "ada@example.com"
    assert stored.address["city"] == "Istanbul"
    assert stored.address["country"] == "Turkey"
    assert stored.membership_date is not None
    assert stored.max_reservations == 3


def test_duplicate_email(lib):
    lib.add_customer(Customer("Ada", "Lovelace", "ada@example.com"))
    with pytest.raises(DuplicateKey):
        lib.add_customer(Customer("Other", "Person", "ADA@example.com"))


@pytest.mark.parametrize("kwargs", [
    {"email": "not-an-email"},
    {"phone": "abc"},
    {"max_reservations": 0},
    {"max_reservations": 11},
    {"status": "banned"},
])
def test_invalid_customer(lib, kwargs):
    data = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com", **kwargs}
    with pytest.raises(ValidationError):
        lib.add_customer(Customer(**data))


def test_list_customers_search_and_pages(lib):
    for i, last in enumerate(["Curie", "Babbage", "Turing"]):
        lib.add_customer(Customer("Person", last, f"p{i}@example.com"))

    page, total = lib.list_customers(limit=2)
    assert total == 3
    assert [c.last_name for c in page] == ["Babbage", "Curie"]

    second, _ = lib.list_customers(page=2, limit=2)
    assert [c.last_name for c in second] == ["Turing"]

    found, total = lib.list_customers("turi")
    assert total == 1 and found[0].last_name == "Turing"


def test_update_customer(lib):
    customer = lib.add_customer(Customer("Ada", "Lovelace", "ada@example.com"))
    updated = lib.update_customer(customer.id, max_reservations=5, status="suspended")
    assert updated.max_reservations == 5
    assert updated.status == "suspended"
    with pytest.raises(ValidationError):
        lib.update_customer(customer.id, email="bad")


def test_remove_customer_guarded(lib, make_book, make_customer, now):
    customer = make_customer()
    r = lib.reserve(make_book().id, customer.id, now=now)

    with pytest.raises(Conflict):
        lib.remove_customer(customer.id)
    lib.cancel_reservation(r.id)
    assert lib.remove_customer(customer.id) is True
    assert lib.remove_customer(customer.id) is False


def test_customer_summary(lib, make_book, make_customer, now):
    customer = make_customer()
    late = lib.reserve(make_book().id, customer.id, now=now)
    lib.reserve(make_book().id, customer.id, now=now)
    lib.return_reservation(late.id, now=late.due_date + timedelta(days=4))

    summary = lib.customer_summary(customer.id, now=now)
    assert summary["stats"] == {
        "total_reservations": 2,
        "active_reservations": 1,
        "overdue_reservations": 0,
        "total_fines": 4.0,
        "unpaid_fines": 4.0,
    }
    assert summary["eligible"] is True
    assert len(summary["reservations"]) == 2


def test_dashboard(lib, make_book, make_customer, now):
    customer = make_customer()
    b1 = make_book(quantity=1)
    make_book(quantity=2)
    lib.reserve(b1.id, customer.id, now=now)

    dashboard = lib.get_dashboard(now=now)
    assert dashboard["total_books"] == 2
    assert dashboard["available_books"] == 1
    assert dashboard["active_reservations"] == 1
    assert dashboard["overdue_reservations"] == 0
    assert dashboard["upcoming_due"] == []
    assert len(dashboard["recent_books"]) == 2