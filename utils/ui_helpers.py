import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# CLI çıktı modunu belirleyen ortam değişkeni
# İzin verilen değerler: 'plain' (varsayılan), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


def print_books(books: List[Dict[str, Any]]) -> None:
    """Kitap görünümlerini (durum bilgili sözlükler) mevcut çıktı moduna göre yazdır."""
    if not books:
        print("No books in library.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(_dumps(books))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("ISBN", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Available", justify="right")
        for b in books:
            table.add_row(str(b["id"]), b["isbn"], b["title"], b["author"],
                          f"{b['available_quantity']}/{b['quantity']}")
        _console.print(table)
    else:
        for b in books:
            print(f"[{b['id']}] {b['isbn']} - {b['title']} by {b['author']} "
                  f"({b['available_quantity']}/{b['quantity']} available)")


def print_customers(customers: List[Dict[str, Any]]) -> None:
    if not customers:
        print("No customers found.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(_dumps(customers))
    elif mode == "rich":
        table = Table(title="👥 Customers", header_style="bold cyan")
        table.add_column("ID", style="dim")
        table.add_column("Name")
        table.add_column("Email", style="magenta")
        table.add_column("Status")
        for c in customers:
            table.add_row(str(c["id"]), c["full_name"], c["email"], c["status"])
        _console.print(table)
    else:
        for c in customers:
            print(f"[{c['id']}] {c['full_name']} <{c['email']}> ({c['status']})")


def print_reservation(reservation: Dict[str, Any], headline: str) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(_dumps(reservation))
        return
    book = reservation.get("book") or {}
    due = reservation["due_date"]
    due_text = due.date().isoformat() if hasattr(due, "date") else str(due)
    lines = [
        headline,
        f"Reservation: {reservation['id']}",
        f"Book: {book.get('title', reservation['book_id'])}",
        f"Status: {reservation['status']}",
        f"Due: {due_text}",
    ]
    fine = reservation.get("fine") or {}
    if fine.get("amount"):
        lines.append(f"Fine: {fine['amount']:.2f}{' (paid)' if fine.get('paid') else ''}")
    if mode == "rich":
        _console.print(Panel.fit("\n".join(lines[1:]), title=headline, border_style="green"))
    else:
        for line in lines:
            print(line)


def print_stats_result(stats: Dict[str, Any]) -> None:
    if not stats:
        print("No statistics available.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(_dumps(stats))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k.replace('_', ' ').title()}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for k, v in stats.items():
            print(f"{k.replace('_', ' ').title()}: {v}")


def print_dashboard(dashboard: Dict[str, Any]) -> None:
    counts = {k: v for k, v in dashboard.items() if isinstance(v, int)}
    mode = get_output_mode()
    if mode == "json":
        print(_dumps(dashboard))
        return
    print_stats_result(counts)
    upcoming = dashboard.get("upcoming_due") or []
    if upcoming:
        print("Due soon:")
        for r in upcoming:
            title = (r.get("book") or {}).get("title", r["book_id"])
            who = (r.get("customer") or {}).get("full_name", r["customer_id"])
            print(f"  - {title} ({who}) due {r['due_date']}")
