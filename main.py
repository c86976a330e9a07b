import logging
import subprocess
import sys
import webbrowser
from functools import wraps
from typing import Optional

import typer

from book import Book
from config import settings
from customer import Customer
from errors import LibraryError
from library import Library
from utils.ui_helpers import (
    print_books,
    print_customers,
    print_dashboard,
    print_reservation,
    print_stats_result,
    set_output_mode,
)

APP_NAME = "Library CLI"

_library: Optional[Library] = None


def get_library() -> Library:
    """CLI'nin kullandığı Library örneğini döndür, ilk kullanımda oluştur."""
    global _library
    if _library is None:
        _library = Library()
    return _library


def handle_errors(func):
    """Kütüphane hatalarını traceback yerine 'Error: ...' ve çıkış kodu 1 ile bildir."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LibraryError as e:
            print(f"Error: {e}")
            raise typer.Exit(code=1)
    return wrapper


# --- Typer CLI uygulaması ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show log messages"),
):
    """Genel CLI seçenekleri."""
    if output:
        set_output_mode(output)
    logging.basicConfig(level=settings.log_level if verbose else logging.WARNING)


# --- Kitaplar ---
@app.command("list")
def cli_list(query: Optional[str] = typer.Option(None, "--query", "-q", help="Filter by title, author or ISBN")):
    """Kitapları güncel durumlarıyla listele."""
    print_books(get_library().list_book_views(query))


@app.command("add")
@handle_errors
def cli_add(
    isbn: str,
    title: Optional[str] = typer.Option(None, help="Manual title; looked up when omitted"),
    author: Optional[str] = typer.Option(None, help="Manual author; looked up when omitted"),
    quantity: int = typer.Option(1, min=0, help="Number of copies"),
):
    """Open Library'de ISBN ile arayarak veya elle başlık ve yazar vererek kitap ekle."""
    lib = get_library()
    try:
        if title and author:
            book = lib.add_book(Book(title=title, author=author, isbn=isbn, quantity=quantity), enrich=True)
        else:
            book = lib.add_book_by_isbn(isbn, quantity=quantity)
    except LookupError as e:
        print(f"Could not find book: {e}")
        raise typer.Exit(code=1)
    print(f"Successfully added: {book.title} by {book.author} (id {book.id})")


@app.command("remove")
@handle_errors
def cli_remove(book_id: int):
    """Kimliğe göre bir kitabı sil."""
    if get_library().remove_book(book_id):
        print(f"Book {book_id} has been removed.")
    else:
        print(f"Book {book_id} not found.")


@app.command("find")
def cli_find(isbn: str):
    """ISBN ile bir kitap bul ve ayrıntılarını göster."""
    lib = get_library()
    book = lib.find_book(isbn)
    if not book:
        print(f"Book with ISBN {isbn} not found.")
        return
    view = lib.book_view(book)
    print("Book Found")
    print(f"Title: {book.title}")
    print(f"Author: {book.author}")
    print(f"ISBN: {book.isbn}")
    print(f"Available: {view['available_quantity']} of {book.quantity} ({view['availability_status']})")


@app.command("search")
def cli_search(
    query: str = typer.Argument(..., help="Title, author or ISBN"),
    limit: int = typer.Option(10, "--limit", "-l", min=1, help="Maximum results to show"),
    online: bool = typer.Option(False, "--online", help="Search Open Library instead of the local catalog"),
):
    """Yerel katalogda ara; --online ile Open Library'de ara."""
    lib = get_library()
    if online:
        results = lib.catalog.search(query, limit)
        if not results:
            print(f"No Open Library results for '{query}'.")
            return
        for meta in results:
            year = f" ({meta.publish_year})" if meta.publish_year else ""
            print(f"{meta.isbn or '-'} - {meta.title} by {meta.author}{year}")
        return

    views = lib.list_book_views(query)[:limit]
    if not views:
        print(f"No books match '{query}'.")
        return
    print_books(views)


@app.command("stats")
def cli_stats():
    """Kütüphane istatistiklerini göster."""
    print_stats_result(get_library().get_statistics())


# --- Müşteriler ---
@app.command("customers")
def cli_customers(search: Optional[str] = typer.Option(None, "--search", "-s")):
    """Müşterileri listele."""
    lib = get_library()
    customers, _ = lib.list_customers(search, limit=settings.max_page_size)
    print_customers([lib.customer_view(c) for c in customers])


@app.command("add-customer")
@handle_errors
def cli_add_customer(
    first_name: str,
    last_name: str,
    email: str,
    phone: Optional[str] = typer.Option(None),
    max_reservations: int = typer.Option(3, min=1, max=10),
):
    """Yeni bir müşteri kaydet."""
    customer = get_library().add_customer(Customer(first_name=first_name, last_name=last_name, email=email,
                                                   phone=phone, max_reservations=max_reservations))
    print(f"Customer added: {customer.full_name} (id {customer.id})")


# --- Rezervasyonlar ---
@app.command("reserve")
@handle_errors
def cli_reserve(book_id: int, customer_id: int):
    """Bir müşteri için kitap ayırt."""
    lib = get_library()
    reservation = lib.reserve(book_id, customer_id)
    print_reservation(lib.reservation_view(reservation), "Reservation created")


@app.command("checkout")
@handle_errors
def cli_checkout(reservation_id: int):
    """Ayrılmış kopyayı teslim alındı olarak işaretle."""
    lib = get_library()
    print_reservation(lib.reservation_view(lib.checkout(reservation_id)), "Book checked out")


@app.command("renew")
@handle_errors
def cli_renew(reservation_id: int):
    """Rezervasyonun iade tarihini uzat."""
    lib = get_library()
    print_reservation(lib.reservation_view(lib.renew(reservation_id)), "Reservation renewed")


@app.command("return")
@handle_errors
def cli_return(reservation_id: int):
    """Kitabı iade et; gecikme cezası varsa hesapla."""
    lib = get_library()
    print_reservation(lib.reservation_view(lib.return_reservation(reservation_id)), "Book returned")


@app.command("cancel")
@handle_errors
def cli_cancel(reservation_id: int):
    """Rezervasyonu iptal et."""
    lib = get_library()
    print_reservation(lib.reservation_view(lib.cancel_reservation(reservation_id)), "Reservation cancelled")


@app.command("pay-fine")
@handle_errors
def cli_pay_fine(reservation_id: int):
    """Rezervasyon cezasının ödendiğini kaydet."""
    lib = get_library()
    print_reservation(lib.reservation_view(lib.pay_fine(reservation_id)), "Fine paid")


@app.command("sweep")
def cli_sweep():
    """İade tarihi geçmiş rezervasyonları gecikmiş olarak işaretle."""
    swept = get_library().sweep_overdue()
    print(f"{len(swept)} reservation(s) marked overdue.")


@app.command("dashboard")
def cli_dashboard():
    """Gösterge paneli özetini göster."""
    print_dashboard(get_library().get_dashboard())


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host),
    port: int = typer.Option(settings.api_port),
    open_browser: bool = typer.Option(True, "--open-browser/--no-browser"),
):
    """Web API'yi uvicorn ile başlat."""
    url = f"http://{host}:{port}/docs"
    print(f"Starting web UI on {url}")
    if open_browser:
        webbrowser.open(url)
    subprocess.run([sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)])


if __name__ == "__main__":
    app()
