import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from book import Book
from config import settings
from customer import Customer
from database import get_db_connection
from errors import (
    Conflict,
    DuplicateKey,
    InvalidTransition,
    LibraryError,
    NotEligible,
    NotFound,
    RenewalLimitExceeded,
    Unavailable,
    ValidationError,
)
from library import Library

logger = logging.getLogger(__name__)

_library: Optional[Library] = None


def get_library() -> Library:
    """Süreç genelindeki Library örneğini döndür, ilk kullanımda oluştur."""
    global _library
    if _library is None:
        _library = Library()
    return _library


async def _overdue_sweep_loop(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(get_library().sweep_overdue)
        except Exception:
            logger.exception("Periodic overdue sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper: Optional[asyncio.Task] = None
    if settings.overdue_sweep_interval > 0:
        sweeper = asyncio.create_task(_overdue_sweep_loop(settings.overdue_sweep_interval))
        logger.info("Overdue sweep scheduled every %ss", settings.overdue_sweep_interval)
    try:
        yield
    finally:
        # Kapanışta takılı kalmamak için tarayıcı görevini iptal et
        if sweeper is not None:
            sweeper.cancel()
            await asyncio.gather(sweeper, return_exceptions=True)


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Hatalar ---
_ERROR_STATUS = {
    NotFound: 404,
    ValidationError: 422,
    DuplicateKey: 409,
    Conflict: 409,
    Unavailable: 400,
    NotEligible: 400,
    InvalidTransition: 400,
    RenewalLimitExceeded: 400,
}


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    status = next((code for kind, code in _ERROR_STATUS.items() if isinstance(exc, kind)), 400)
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": exc.kind})


# --- Güvenlik ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Yazma uç noktaları için API anahtarını doğrulayan bağımlılık."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Modeller ---
class BookCreateModel(BaseModel):
    isbn: str = Field(..., description="ISBN-10 or ISBN-13")
    title: Optional[str] = Field(default=None, description="Looked up by ISBN when omitted")
    author: Optional[str] = Field(default=None, description="Looked up by ISBN when omitted")
    quantity: int = Field(default=1, ge=0)
    description: Optional[str] = None
    publish_year: Optional[int] = None
    genre: Optional[str] = None
    publisher: Optional[str] = None
    page_count: Optional[int] = None
    cover_url: Optional[str] = None
    subjects: Optional[List[str]] = None
    enrich: bool = Field(default=True, description="Fill missing metadata from Open Library")


class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    publish_year: Optional[int] = None
    genre: Optional[str] = None
    publisher: Optional[str] = None
    page_count: Optional[int] = None
    cover_url: Optional[str] = None
    subjects: Optional[List[str]] = None


class AddressModel(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class CustomerCreateModel(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[AddressModel] = None
    status: str = "active"
    max_reservations: int = 3
    notes: Optional[str] = None


class CustomerUpdateModel(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[AddressModel] = None
    status: Optional[str] = None
    max_reservations: Optional[int] = None
    notes: Optional[str] = None


class ReservationCreateModel(BaseModel):
    customer_id: int
    book_id: int
    due_date: Optional[datetime] = Field(default=None, description="Defaults to 14 days from now")
    notes: Optional[str] = None


def _pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    return {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit}


# --- Sağlık ---
@app.get("/health")
def health(library: Library = Depends(get_library)):
    """Hızlı bir veritabanı kontrolüyle hafif sağlık uç noktası."""
    db_ok = True
    try:
        conn = get_db_connection(library.db_file)
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except Exception:
        logger.warning("Database check failed", exc_info=True)
        db_ok = False
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "services": {"open_library": settings.enable_enrichment},
    }


@app.get("/dashboard")
def dashboard(library: Library = Depends(get_library)):
    return library.get_dashboard()


# --- Kitaplar ---
@app.get("/books")
def list_books(q: Optional[str] = Query(None, description="Search title, author or ISBN"),
               library: Library = Depends(get_library)):
    return library.list_book_views(q)


@app.post("/books", status_code=201, dependencies=[Depends(get_api_key)])
def create_book(payload: BookCreateModel, library: Library = Depends(get_library)):
    if not payload.title or not payload.author:
        book = library.add_book_by_isbn(payload.isbn, quantity=payload.quantity)
    else:
        data = payload.model_dump(exclude={"enrich"})
        book = library.add_book(Book(**data), enrich=payload.enrich)
    return library.book_view(book, 0)


@app.get("/books/{book_id}")
def get_book(book_id: int, library: Library = Depends(get_library)):
    return library.book_view(library.get_book(book_id))


@app.put("/books/{book_id}", dependencies=[Depends(get_api_key)])
def update_book(book_id: int, payload: BookUpdateModel, library: Library = Depends(get_library)):
    fields = payload.model_dump(exclude_unset=True)
    if not fields:
        return get_book(book_id, library)
    return library.book_view(library.update_book(book_id, **fields))


@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: int, library: Library = Depends(get_library)):
    if not library.remove_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found")
    return {"status": "deleted", "id": book_id}


@app.get("/catalog/search")
def search_catalog(q: str = Query(..., min_length=1), limit: int = Query(10, ge=1, le=50),
                   library: Library = Depends(get_library)):
    """Open Library'de ara (yerel katalogda değil)."""
    return [m.to_dict() for m in library.catalog.search(q, limit)]


# --- Müşteriler ---
@app.get("/customers")
def list_customers(search: Optional[str] = None, page: int = Query(1, ge=1),
                   limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
                   library: Library = Depends(get_library)):
    customers, total = library.list_customers(search, page, limit)
    return {"customers": [library.customer_view(c) for c in customers],
            "pagination": _pagination(page, limit, total)}


@app.post("/customers", status_code=201, dependencies=[Depends(get_api_key)])
def create_customer(payload: CustomerCreateModel, library: Library = Depends(get_library)):
    customer = library.add_customer(Customer(**payload.model_dump()))
    return library.customer_view(customer)


@app.get("/customers/{customer_id}")
def get_customer(customer_id: int, library: Library = Depends(get_library)):
    return library.customer_summary(customer_id)


@app.put("/customers/{customer_id}", dependencies=[Depends(get_api_key)])
def update_customer(customer_id: int, payload: CustomerUpdateModel, library: Library = Depends(get_library)):
    fields = payload.model_dump(exclude_unset=True)
    if not fields:
        return library.customer_view(library.get_customer(customer_id))
    return library.customer_view(library.update_customer(customer_id, **fields))


@app.delete("/customers/{customer_id}", dependencies=[Depends(get_api_key)])
def delete_customer(customer_id: int, library: Library = Depends(get_library)):
    if not library.remove_customer(customer_id):
        raise HTTPException(status_code=404, detail="Customer not found")
    return {"status": "deleted", "id": customer_id}


# --- Rezervasyonlar ---
@app.get("/reservations")
def list_reservations(status: Optional[str] = None, customer_id: Optional[int] = None,
                      book_id: Optional[int] = None, page: int = Query(1, ge=1),
                      limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
                      library: Library = Depends(get_library)):
    reservations, total = library.reservations.list_reservations(
        status=status, customer_id=customer_id, book_id=book_id, page=page, limit=limit)
    return {"reservations": [library.reservation_view(r) for r in reservations],
            "pagination": _pagination(page, limit, total)}


@app.post("/reservations", status_code=201, dependencies=[Depends(get_api_key)])
def create_reservation(payload: ReservationCreateModel, library: Library = Depends(get_library)):
    reservation = library.reserve(payload.book_id, payload.customer_id, due_date=payload.due_date,
                                  notes=payload.notes)
    return {"message": "Reservation created successfully", "reservation": library.reservation_view(reservation)}


@app.get("/reservations/overdue")
def overdue_reservations(library: Library = Depends(get_library)):
    overdue = library.reservations.list_overdue()
    return {"count": len(overdue), "reservations": [library.reservation_view(r) for r in overdue]}


@app.post("/reservations/sweep", dependencies=[Depends(get_api_key)])
def sweep_overdue(library: Library = Depends(get_library)):
    swept = library.sweep_overdue()
    return {"count": len(swept), "reservations": [library.reservation_view(r) for r in swept]}


@app.get("/reservations/{reservation_id}")
def get_reservation(reservation_id: int, library: Library = Depends(get_library)):
    return library.reservation_view(library.reservations.get(reservation_id))


@app.post("/reservations/{reservation_id}/checkout", dependencies=[Depends(get_api_key)])
def checkout_reservation(reservation_id: int, library: Library = Depends(get_library)):
    reservation = library.checkout(reservation_id)
    return {"message": "Book checked out", "reservation": library.reservation_view(reservation)}


@app.post("/reservations/{reservation_id}/renew", dependencies=[Depends(get_api_key)])
def renew_reservation(reservation_id: int, library: Library = Depends(get_library)):
    reservation = library.renew(reservation_id)
    return {"message": "Reservation renewed successfully", "reservation": library.reservation_view(reservation)}


@app.post("/reservations/{reservation_id}/return", dependencies=[Depends(get_api_key)])
def return_reservation(reservation_id: int, library: Library = Depends(get_library)):
    reservation = library.return_reservation(reservation_id)
    return {"message": "Book returned successfully", "reservation": library.reservation_view(reservation),
            "fine": reservation.fine.amount}


@app.post("/reservations/{reservation_id}/pay", dependencies=[Depends(get_api_key)])
def pay_fine(reservation_id: int, library: Library = Depends(get_library)):
    reservation = library.pay_fine(reservation_id)
    return {"message": "Fine paid", "reservation": library.reservation_view(reservation)}


@app.delete("/reservations/{reservation_id}", dependencies=[Depends(get_api_key)])
def cancel_reservation(reservation_id: int, library: Library = Depends(get_library)):
    library.cancel_reservation(reservation_id)
    return {"message": "Reservation cancelled successfully"}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=settings.log_level)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
