import httpx
import pytest

from services import open_library
from services.open_library import OpenLibraryClient, cover_url


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


DETAILS = {
    "ISBN:9780321765723": {
        "details": {
            "title": "The Lord of the Rings",
            "authors": [{"key": "/authors/OL26320A", "name": "J.R.R. Tolkien"}],
            "publishers": ["Houghton Mifflin"],
            "publish_date": "October 2012",
            "number_of_pages": 1216,
            "description": {"type": "/type/text", "value": "An epic."},
            "subjects": ["Fantasy", "Middle Earth"],
        }
    }
}


@pytest.fixture
def calls(monkeypatch):
    """Patch httpx.get; set ``calls.response`` to what it should return."""

    class Recorder(list):
        response = FakeResponse(200, {})

    recorder = Recorder()

    def fake_get(url, params=None, timeout=None, follow_redirects=False):
        recorder.append({"url": url, "params": params, "timeout": timeout})
        if isinstance(recorder.response, Exception):
            raise recorder.response
        return recorder.response

    monkeypatch.setattr(open_library.httpx, "get", fake_get)
    monkeypatch.setattr(open_library.time, "sleep", lambda s: None)
    return recorder


def test_lookup_by_isbn(calls):
    calls.response = FakeResponse(200, DETAILS)
    client = OpenLibraryClient(timeout=3)

    meta = client.lookup_by_isbn("978-0-321-76572-3")

    assert meta.title == "The Lord of the Rings"
    assert meta.author == "J.R.R. Tolkien"
    assert meta.publisher == "Houghton Mifflin"
    assert meta.publish_year == 2012
    assert meta.page_count == 1216
    assert meta.description == "An epic."
    assert meta.subjects == ["Fantasy", "Middle Earth"]
    assert meta.cover_url == cover_url("9780321765723")
    assert calls[0]["params"]["bibkeys"] == "ISBN:9780321765723"
    assert calls[0]["timeout"] == 3


def test_lookup_unknown_isbn(calls):
    calls.response = FakeResponse(200, {})
    assert OpenLibraryClient().lookup_by_isbn("0000000000") is None


@pytest.mark.parametrize("response", [
    FakeResponse(500, {}),
    FakeResponse(404),
    FakeResponse(200, None),
    httpx.ConnectTimeout("timed out"),
])
def test_lookup_failures_return_none(calls, response):
    calls.response = response
    assert OpenLibraryClient().lookup_by_isbn("9780321765723") is None


def test_retries_network_errors(calls):
    calls.response = httpx.ConnectError("refused")
    assert OpenLibraryClient(retries=3).lookup_by_isbn("9780321765723") is None
    assert len(calls) == 3


def test_search(calls):
    calls.response = FakeResponse(200, {"docs": [
        {"title": "Dune", "author_name": ["Frank Herbert"], "isbn": ["9780441013593"],
         "first_publish_year": 1965, "cover_i": 42},
        {"title": "Dune Messiah"},
    ]})

    results = OpenLibraryClient().search("dune", limit=5)

    assert [r.title for r in results] == ["Dune", "Dune Messiah"]
    assert results[0].isbn == "9780441013593"
    assert results[0].cover_url.endswith("/b/id/42-M.jpg")
    assert results[1].author == "Unknown Author"
    assert calls[0]["params"] == {"q": "dune", "limit": 5}


def test_search_blank_query_skips_request(calls):
    assert OpenLibraryClient().search("  ") == []
    assert calls == []
