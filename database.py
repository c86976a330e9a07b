import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from config import settings
from errors import Conflict, DuplicateKey, NotFound, ValidationError

logger = logging.getLogger(__name__)

# Varsayılan veritabanı dosyası; LIBRARY_DB_FILE bunu geçersiz kılar.
DATABASE_FILE = settings.database_file or "library.db"

BOOK_COLUMNS = (
    "isbn", "title", "author", "quantity", "description", "publish_year", "genre",
    "publisher", "page_count", "cover_url", "subjects", "created_at",
)
CUSTOMER_COLUMNS = (
    "first_name", "last_name", "email", "phone", "address", "membership_date",
    "status", "max_reservations", "notes", "created_at",
)
RESERVATION_COLUMNS = (
    "book_id", "customer_id", "reservation_date", "due_date", "return_date", "status",
    "renewal_count", "fine", "notes", "version", "created_at",
)

_OPERATORS = {"$lt": "<", "$lte": "<=", "$gt": ">", "$gte": ">=", "$ne": "!="}

Filter = Dict[str, Any]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def to_iso(value: datetime) -> str:
    """Datetime'ı sabit genişlikli UTC ISO metnine çevir; saklanan değerler doğru sıralanır."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """SQLite veritabanına bir bağlantı aç."""
    conn = sqlite3.connect(db_file or DATABASE_FILE, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Bir bloğu yazma kilitli bir işlem içinde çalıştır.

    BEGIN IMMEDIATE yazma kilidini en başta alır; böylece blok içindeki
    oku-kontrol et-yaz dizileri (stok kontrolü, silme korumaları) bağlantılar arasında sıraya girer.
    """
    conn = get_db_connection(db_file)
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


class Collection:
    """Tek bir tabloya doküman tarzı erişim.

    Dokümanlar düz sözlüklerdir. ``json_columns`` içindeki sütunlar JSON tutar,
    datetime değerleri UTC ISO metni olarak saklanır. Filtreler bir sütunu bir
    değere (eşitlik), ``None`` (IS NULL), bir listeye (IN) ya da ``{"$lt": when}``
    gibi bir operatör sözlüğüne eşler; ``"$or"`` bir filtre listesi alır.
    """

    def __init__(self, table: str, columns: Sequence[str], *, label: str,
                 json_columns: Iterable[str] = (), db_file: Optional[str] = None) -> None:
        self.table = table
        self.columns = tuple(columns)
        self.label = label
        self.json_columns = frozenset(json_columns)
        self.db_file = db_file

    # ------------------------- Sorgular ------------------------- #
    def find(self, filter: Optional[Filter] = None, *, order_by: Union[str, Sequence[str], None] = None,
             limit: Optional[int] = None, offset: int = 0,
             conn: Optional[sqlite3.Connection] = None) -> List[Dict[str, Any]]:
        where, params = self._where(filter)
        sql = f"SELECT * FROM {self.table}{where}{self._order(order_by)}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        with self._session(conn) as c:
            rows = c.execute(sql, params).fetchall()
        return [self._decode(row) for row in rows]

    def find_one(self, filter: Filter, conn: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
        found = self.find(filter, limit=1, conn=conn)
        return found[0] if found else None

    def find_by_id(self, doc_id: int, conn: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
        with self._session(conn) as c:
            row = c.execute(f"SELECT * FROM {self.table} WHERE id = ?", (doc_id,)).fetchone()
        if row is None:
            raise NotFound(f"{self.label} {doc_id} not found.")
        return self._decode(row)

    def count_where(self, filter: Optional[Filter] = None, conn: Optional[sqlite3.Connection] = None) -> int:
        where, params = self._where(filter)
        with self._session(conn) as c:
            return c.execute(f"SELECT COUNT(*) FROM {self.table}{where}", params).fetchone()[0]

    # ------------------------- Yazma ------------------------- #
    def insert(self, doc: Dict[str, Any], conn: Optional[sqlite3.Connection] = None) -> int:
        values = self._encode(doc)
        names = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        with self._session(conn) as c:
            try:
                cursor = c.execute(f"INSERT INTO {self.table} ({names}) VALUES ({marks})", list(values.values()))
            except sqlite3.IntegrityError as e:
                raise self._integrity_error(e, values) from e
            return cursor.lastrowid

    def update(self, doc_id: int, patch: Dict[str, Any], *, expected: Optional[Filter] = None,
               conn: Optional[sqlite3.Connection] = None) -> Dict[str, Any]:
        """``patch``'i tek bir dokümana uygula ve güncellenmiş dokümanı döndür.

        ``expected`` verilirse yazma yalnızca saklanan doküman hâlâ onunla
        eşleşiyorsa yapılır; aksi halde :class:`Conflict` fırlatılır. ``version``
        sütunu olan koleksiyonlarda bu değer her güncellemede artırılır.
        """
        values = self._encode(patch)
        values.pop("version", None)
        assignments = [f"{name} = ?" for name in values]
        if "version" in self.columns:
            assignments.append("version = version + 1")
        if not assignments:
            return self.find_by_id(doc_id, conn=conn)

        cond, cond_params = self._conditions(expected or {})
        sql = f"UPDATE {self.table} SET {', '.join(assignments)} WHERE id = ?"
        if cond:
            sql += " AND " + " AND ".join(cond)
        params = list(values.values()) + [doc_id] + cond_params

        with self._session(conn) as c:
            try:
                cursor = c.execute(sql, params)
            except sqlite3.IntegrityError as e:
                raise self._integrity_error(e, values) from e
            if cursor.rowcount == 0:
                # Doküman ya silinmiş ya da artık `expected` ile eşleşmiyor
                self.find_by_id(doc_id, conn=c)
                raise Conflict(f"{self.label} {doc_id} was modified concurrently; reload and retry.")
            return self.find_by_id(doc_id, conn=c)

    def delete(self, doc_id: int, conn: Optional[sqlite3.Connection] = None) -> bool:
        with self._session(conn) as c:
            cursor = c.execute(f"DELETE FROM {self.table} WHERE id = ?", (doc_id,))
            return cursor.rowcount > 0

    # ------------------------- Yardımcılar ------------------------- #
    @contextmanager
    def _session(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        # Dışarıdan verilen bağlantı, dıştaki bir işleme aittir
        if conn is not None:
            yield conn
            return
        conn = get_db_connection(self.db_file)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _check_column(self, name: str) -> None:
        if name != "id" and name not in self.columns:
            raise ValueError(f"Unknown field '{name}' for {self.table}.")

    def _encode_value(self, name: str, value: Any) -> Any:
        if name in self.json_columns and value is not None:
            return json.dumps(value, ensure_ascii=False, default=str)
        if isinstance(value, datetime):
            return to_iso(value)
        if isinstance(value, date):
            return value.isoformat()
        return value

    def _encode(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        encoded = {}
        for name, value in doc.items():
            if name == "id":
                continue
            self._check_column(name)
            encoded[name] = self._encode_value(name, value)
        return encoded

    def _decode(self, row: sqlite3.Row) -> Dict[str, Any]:
        doc = dict(row)
        for name in self.json_columns:
            raw = doc.get(name)
            if isinstance(raw, str):
                try:
                    doc[name] = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON in %s.%s for id %s", self.table, name, doc.get("id"))
                    doc[name] = None
        return doc

    def _conditions(self, filter: Filter) -> tuple:
        clauses: List[str] = []
        params: List[Any] = []
        for name, cond in filter.items():
            if name == "$or":
                parts = []
                for sub in cond:
                    sub_clauses, sub_params = self._conditions(sub)
                    if sub_clauses:
                        parts.append("(" + " AND ".join(sub_clauses) + ")")
                        params.extend(sub_params)
                if parts:
                    clauses.append("(" + " OR ".join(parts) + ")")
                continue
            self._check_column(name)
            if isinstance(cond, dict):
                for op, value in cond.items():
                    if op == "$in":
                        clause, values = self._in_clause(name, value)
                        clauses.append(clause)
                        params.extend(values)
                    elif op == "$like":
                        clauses.append(f"{name} LIKE ? ESCAPE '\\'")
                        params.append(f"%{_escape_like(str(value))}%")
                    elif op in _OPERATORS:
                        clauses.append(f"{name} {_OPERATORS[op]} ?")
                        params.append(self._encode_value(name, value))
                    else:
                        raise ValueError(f"Unsupported filter operator '{op}'.")
            elif cond is None:
                clauses.append(f"{name} IS NULL")
            elif isinstance(cond, (list, tuple, set, frozenset)):
                clause, values = self._in_clause(name, cond)
                clauses.append(clause)
                params.extend(values)
            else:
                clauses.append(f"{name} = ?")
                params.append(self._encode_value(name, cond))
        return clauses, params

    def _in_clause(self, name: str, values: Iterable[Any]) -> tuple:
        values = [self._encode_value(name, v) for v in values]
        if not values:
            return "0", []
        return f"{name} IN ({', '.join('?' for _ in values)})", values

    def _where(self, filter: Optional[Filter]) -> tuple:
        clauses, params = self._conditions(filter or {})
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _order(self, order_by: Union[str, Sequence[str], None]) -> str:
        if not order_by:
            return ""
        if isinstance(order_by, str):
            order_by = [order_by]
        parts = []
        for key in order_by:
            direction = "DESC" if key.startswith("-") else "ASC"
            name = key.lstrip("-")
            self._check_column(name)
            parts.append(f"{name} {direction}")
        return " ORDER BY " + ", ".join(parts)

    def _integrity_error(self, error: sqlite3.IntegrityError, values: Dict[str, Any]) -> Exception:
        message = str(error)
        if "UNIQUE" in message:
            column = message.rsplit(".", 1)[-1]
            return DuplicateKey(f"{self.label} with {column} {values.get(column)} already exists.")
        return ValidationError(f"Invalid {self.label.lower()}: {message}")


def books_collection(db_file: Optional[str] = None) -> Collection:
    return Collection("books", BOOK_COLUMNS, label="Book", json_columns=("subjects",), db_file=db_file)


def customers_collection(db_file: Optional[str] = None) -> Collection:
    return Collection("customers", CUSTOMER_COLUMNS, label="Customer", json_columns=("address",), db_file=db_file)


def reservations_collection(db_file: Optional[str] = None) -> Collection:
    return Collection("reservations", RESERVATION_COLUMNS, label="Reservation", json_columns=("fine",),
                      db_file=db_file)


def create_tables(db_file: Optional[str] = None) -> None:
    """Tablolar ve indeksler yoksa oluştur."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                isbn TEXT UNIQUE NOT NULL,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                quantity INTEGER NOT NULL DEFAULT 0 CHECK(quantity >= 0),
                description TEXT,
                publish_year INTEGER,
                genre TEXT,
                publisher TEXT,
                page_count INTEGER,
                cover_url TEXT,
                subjects TEXT,
                created_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                first_name TEXT NOT NULL,
                last_name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                phone TEXT,
                address TEXT,
                membership_date TEXT,
                status TEXT NOT NULL DEFAULT 'active',
                max_reservations INTEGER NOT NULL DEFAULT 3
                    CHECK(max_reservations >= 1 AND max_reservations <= 10),
                notes TEXT,
                created_at TEXT
            )
        """)
        # book_id/customer_id kimlikle referanstır; silmeler kodda korunur
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reservations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL,
                customer_id INTEGER NOT NULL,
                reservation_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                return_date TEXT,
                status TEXT NOT NULL DEFAULT 'reserved',
                renewal_count INTEGER NOT NULL DEFAULT 0 CHECK(renewal_count >= 0 AND renewal_count <= 3),
                fine TEXT,
                notes TEXT,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title_author ON books(title, author)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_created_at ON books(created_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_customers_name ON customers(last_name, first_name)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_customer_status ON reservations(customer_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_book_status ON reservations(book_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_status_due ON reservations(status, due_date)")
        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Veritabanını başlat, gerekirse tabloları oluştur."""
    create_tables(db_file)
