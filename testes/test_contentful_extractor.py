import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from contentful_to_strapi.extractors.contentful_extractor import ContentfulClient
from contentful_to_strapi.extractors.reference_resolver import ASSET


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.headers = {}

    def json(self):
        return self._payload

    def raise_for_status(self):
        pass


class FakeSession:
    def __init__(self, pages):
        self.pages = list(pages)
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return FakeResponse(self.pages.pop(0))


def _item(sys_id):
    return {"sys": {"id": sys_id}, "fields": {"title": sys_id}}


def _client(session):
    return ContentfulClient("space1", "cda-token", session=session, rpm=600000)


def test_get_entries_sends_query_and_indexes_includes():
    page = {
        "total": 1,
        "items": [_item("e1")],
        "includes": {"Asset": [{"sys": {"id": "a1"}, "fields": {}}]},
    }
    session = FakeSession([page])
    result = _client(session).get_entries("journal", limit=10, include=2, filters={"fields.slug": "x"})
    url, kwargs = session.calls[0]
    assert url == "https://cdn.contentful.com/spaces/space1/environments/master/entries"
    assert kwargs["headers"] == {"Authorization": "Bearer cda-token"}
    assert kwargs["params"] == {
        "content_type": "journal",
        "limit": 10,
        "skip": 0,
        "include": 2,
        "fields.slug": "x",
    }
    assert result.total == 1
    assert result.index.get(ASSET, "a1") is not None


def test_iter_entries_pages_until_total():
    pages = [
        {"total": 3, "items": [_item("e1"), _item("e2")]},
        {"total": 3, "items": [_item("e3")]},
    ]
    session = FakeSession(pages)
    ids = [item["sys"]["id"] for item, _ in _client(session).iter_entries("journal", page_size=2)]
    assert ids == ["e1", "e2", "e3"]
    assert [call[1]["params"]["skip"] for call in session.calls] == [0, 2]


def test_iter_entries_respects_max_items():
    session = FakeSession([{"total": 3, "items": [_item("e1"), _item("e2")]}])
    items = list(_client(session).iter_entries("journal", page_size=2, max_items=1))
    assert len(items) == 1
    assert len(session.calls) == 1


def test_include_depth_is_capped():
    session = FakeSession([{"total": 0, "items": []}])
    _client(session).get_entries("journal", include=25)
    assert session.calls[0][1]["params"]["include"] == 10
