import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from config import settings
from errors import ExternalServiceError
from utils.validators import ISBNValidator

logger = logging.getLogger(__name__)

BASE_URL = "https://openlibrary.org"
COVERS_URL = "https://covers.openlibrary.org"
MAX_SUBJECTS = 5


@dataclass
class BookMetadata:
    """Catalog data for one edition as returned by Open Library"""
    isbn: Optional[str]
    title: str
    authors: List[str] = field(default_factory=list)
    publish_year: Optional[int] = None
    page_count: Optional[int] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    subjects: List[str] = field(default_factory=list)
    cover_url: Optional[str] = None

    @property
    def author(self) -> str:
        return ", ".join(self.authors) if self.authors else "Unknown Author"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isbn": self.isbn,
            "title": self.title,
            "authors": self.authors,
            "publish_year": self.publish_year,
            "page_count": self.page_count,
            "publisher": self.publisher,
            "description": self.description,
            "subjects": self.subjects,
            "cover_url": self.cover_url,
        }


def cover_url(isbn: str, size: str = "M") -> str:
    """Cover image URL; size is S, M or L."""
    return f"{COVERS_URL}/b/isbn/{isbn}-{size}.jpg"


def _name(item: Any) -> Optional[str]:
    if isinstance(item, dict):
        return item.get("name")
    if isinstance(item, str):
        return item
    return None


def _year(publish_date: Optional[str]) -> Optional[int]:
    match = re.search(r"\d{4}", publish_date or "")
    return int(match.group(0)) if match else None


class OpenLibraryClient:
    """Looks up catalog metadata on Open Library.

    Every request is bounded by ``timeout`` seconds. Lookups never raise: any
    network or decoding failure is logged and reported as "nothing found", so a
    book can always be saved without enrichment.
    """

    def __init__(self, timeout: Optional[float] = None, retries: Optional[int] = None) -> None:
        self.timeout = settings.openlibrary_timeout if timeout is None else timeout
        self.retries = max(1, settings.openlibrary_retries if retries is None else retries)

    def lookup_by_isbn(self, isbn: str) -> Optional[BookMetadata]:
        clean = ISBNValidator.normalize_isbn(isbn)
        if not clean:
            return None
        try:
            data = self._get_json(f"{BASE_URL}/api/books",
                                  params={"bibkeys": f"ISBN:{clean}", "jscmd": "details", "format": "json"})
        except ExternalServiceError as e:
            logger.warning("Open Library lookup failed for ISBN %s: %s", clean, e)
            return None

        entry = (data or {}).get(f"ISBN:{clean}")
        if not entry:
            return None
        details = entry.get("details") or {}
        if not details.get("title"):
            return None
        return self._metadata_from_details(clean, details)

    def search(self, query: str, limit: int = 10) -> List[BookMetadata]:
        if not query or not query.strip():
            return []
        try:
            data = self._get_json(f"{BASE_URL}/search.json", params={"q": query.strip(), "limit": limit})
        except ExternalServiceError as e:
            logger.warning("Open Library search failed for %r: %s", query, e)
            return []

        results = []
        for doc in (data or {}).get("docs", [])[:limit]:
            isbns = doc.get("isbn") or []
            cover_id = doc.get("cover_i")
            results.append(BookMetadata(
                isbn=isbns[0] if isbns else None,
                title=doc.get("title") or "Unknown Title",
                authors=doc.get("author_name") or ["Unknown Author"],
                publish_year=doc.get("first_publish_year"),
                page_count=doc.get("number_of_pages_median"),
                publisher=(doc.get("publisher") or [None])[0],
                cover_url=f"{COVERS_URL}/b/id/{cover_id}-M.jpg" if cover_id else None,
            ))
        return results

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _metadata_from_details(isbn: str, details: Dict[str, Any]) -> BookMetadata:
        authors = [n for n in (_name(a) for a in details.get("authors") or []) if n]
        publishers = [n for n in (_name(p) for p in details.get("publishers") or []) if n]
        subjects = [n for n in (_name(s) for s in details.get("subjects") or []) if n][:MAX_SUBJECTS]

        description = details.get("description")
        if isinstance(description, dict):
            description = description.get("value")

        return BookMetadata(
            isbn=isbn,
            title=details["title"],
            authors=authors,
            publish_year=_year(details.get("publish_date")),
            page_count=details.get("number_of_pages"),
            publisher=publishers[0] if publishers else None,
            description=description or None,
            subjects=subjects,
            cover_url=cover_url(isbn),
        )

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[dict]:
        resp = self._http_get_with_retry(url, params=params)
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise ExternalServiceError(f"Open Library returned HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise ExternalServiceError("Open Library returned invalid JSON") from e

    def _http_get_with_retry(self, url: str, params: Optional[Dict[str, Any]] = None,
                             backoff: float = 0.5) -> httpx.Response:
        """GET with a short exponential backoff between attempts."""
        for attempt in range(self.retries):
            try:
                return httpx.get(url, params=params, timeout=self.timeout, follow_redirects=True)
            except httpx.RequestError as exc:
                if attempt < self.retries - 1:
                    time.sleep(backoff * (2 ** attempt))
                    continue
                raise ExternalServiceError("Open Library unreachable") from exc
        raise ExternalServiceError("Open Library unreachable")
