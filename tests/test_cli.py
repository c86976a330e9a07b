from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

import main
from book import Book
from library import Library
from main import app
from services.open_library import BookMetadata

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_library(lib, monkeypatch):
    monkeypatch.setattr(main, "get_library", lambda: lib)
    monkeypatch.setenv("LIB_CLI_OUTPUT", "plain")
    return lib


def test_list_no_books():
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_list_books(lib, make_book):
    book = make_book(quantity=2)
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert f"[{book.id}] {book.isbn} - Dune by Frank Herbert (2/2 available)" in result.stdout


def test_add_book_success(lib, monkeypatch):
    mock_book = Book(title="Test Book", author="Test Author", isbn="1234567890", id=7)
    add_mock = MagicMock(return_value=mock_book)
    monkeypatch.setattr(Library, "add_book_by_isbn", add_mock)

    result = runner.invoke(app, ["add", "1234567890"])
    assert result.exit_code == 0
    assert "Successfully added: Test Book by Test Author (id 7)" in result.stdout
    add_mock.assert_called_once_with("1234567890", quantity=1)


def test_add_book_manual(lib):
    result = runner.invoke(app, ["add", "1234567890", "--title", "Manual", "--author", "Writer", "--quantity", "2"])
    assert result.exit_code == 0
    assert "Successfully added: Manual by Writer" in result.stdout
    assert lib.find_book("1234567890").quantity == 2


def test_add_book_not_found():
    result = runner.invoke(app, ["add", "0000000000"])
    assert result.exit_code == 1
    assert "Could not find book: Book not found." in result.stdout


def test_add_duplicate_reports_error(make_book):
    book = make_book()
    result = runner.invoke(app, ["add", book.isbn, "--title", "Again", "--author", "Someone"])
    assert result.exit_code == 1
    assert "Error: " in result.stdout


def test_remove_book(make_book):
    book = make_book()
    result = runner.invoke(app, ["remove", str(book.id)])
    assert result.exit_code == 0
    assert f"Book {book.id} has been removed." in result.stdout

    result = runner.invoke(app, ["remove", str(book.id)])
    assert f"Book {book.id} not found." in result.stdout


def test_find_book(make_book):
    book = make_book(quantity=3)
    result = runner.invoke(app, ["find", book.isbn])
    assert result.exit_code == 0
    assert "Book Found" in result.stdout
    assert "Title: Dune" in result.stdout
    assert "Available: 3 of 3 (available)" in result.stdout


def test_find_book_not_found():
    result = runner.invoke(app, ["find", "111"])
    assert result.exit_code == 0
    assert "Book with ISBN 111 not found." in result.stdout


def test_search(make_book):
    make_book(title="Dune", author="Frank Herbert")
    make_book(title="Emma", author="Jane Austen")

    result = runner.invoke(app, ["search", "austen"])
    assert result.exit_code == 0
    assert "Emma by Jane Austen" in result.stdout
    assert "Dune" not in result.stdout

    result = runner.invoke(app, ["search", "tolkien"])
    assert "No books match 'tolkien'." in result.stdout


def test_search_online(catalog, monkeypatch):
    monkeypatch.setattr(catalog, "search", lambda query, limit=10: [
        BookMetadata(isbn="9780441013593", title="Dune", authors=["Frank Herbert"], publish_year=1965)])
    result = runner.invoke(app, ["search", "dune", "--online"])
    assert "9780441013593 - Dune by Frank Herbert (1965)" in result.stdout


def test_stats(make_book):
    make_book(quantity=2)
    result = runner.invoke(app, ["stats"])
    assert "Total Books: 1" in result.stdout
    assert "Total Copies: 2" in result.stdout


def test_customer_and_reservation_commands(lib, make_book):
    book = make_book(quantity=1)
    result = runner.invoke(app, ["add-customer", "Ada", "Lovelace", "ada@example.com"])
    assert result.exit_code == 0
    assert "Customer added: Ada Lovelace" in result.stdout
    customer_id = lib.list_customers()[0][0].id

    result = runner.invoke(app, ["customers"])
    assert "Ada Lovelace <ada@example.com> (active)" in result.stdout

    result = runner.invoke(app, ["reserve", str(book.id), str(customer_id)])
    assert result.exit_code == 0
    assert "Reservation created" in result.stdout
    assert "Status: reserved" in result.stdout
    reservation_id = lib.reservations.list_reservations()[0][0].id

    assert "Status: borrowed" in runner.invoke(app, ["checkout", str(reservation_id)]).stdout
    assert "Reservation renewed" in runner.invoke(app, ["renew", str(reservation_id)]).stdout

    result = runner.invoke(app, ["return", str(reservation_id)])
    assert result.exit_code == 0
    assert "Status: returned" in result.stdout

    result = runner.invoke(app, ["cancel", str(reservation_id)])
    assert result.exit_code == 1
    assert "Error: Cannot cancel a reservation that is returned." in result.stdout


def test_unavailable_reserve_exits_nonzero(lib, make_book, make_customer, now):
    book = make_book(quantity=1)
    lib.reserve(book.id, make_customer().id, now=now)
    result = runner.invoke(app, ["reserve", str(book.id), str(make_customer().id)])
    assert result.exit_code == 1
    assert "no copies available" in result.stdout


def test_sweep_and_pay_fine(lib, make_book, make_customer):
    r = lib.reserve(make_book().id, make_customer().id)
    # push the due date into the past
    lib.reservation_store.update(r.id, {"due_date": r.reservation_date - timedelta(days=2, hours=23)})

    result = runner.invoke(app, ["sweep"])
    assert "1 reservation(s) marked overdue." in result.stdout

    result = runner.invoke(app, ["return", str(r.id)])
    assert "Fine: 3.00" in result.stdout

    result = runner.invoke(app, ["pay-fine", str(r.id)])
    assert result.exit_code == 0
    assert "Fine: 3.00 (paid)" in result.stdout


def test_json_output(make_book):
    make_book()
    result = runner.invoke(app, ["--output", "json", "list"])
    assert result.exit_code == 0
    assert result.stdout.strip().startswith("[")


def test_dashboard(make_book):
    make_book()
    result = runner.invoke(app, ["dashboard"])
    assert result.exit_code == 0
    assert "Total Books: 1" in result.stdout
