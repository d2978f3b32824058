"""End-to-end tests for the HTTP API."""

import pytest
from conftest import FakeFetcher, make_source, search_page
from fastapi.testclient import TestClient

from novelscout.cache import MemoryBackend, ResultCache
from novelscout.errors import FetchFailed
from novelscout.main import create_app
from novelscout.registry import SourceRegistry

DRAGON_PAGE = search_page(
    {"title": "Dragon King", "link": "/book/1.html", "cover": "/img/1.jpg", "author": "Li", "intro": "A dragon."},
)
INDEX_PAGE = """
<html><body>
  <a href="/">Home</a>
  <a href="/book/1/1.html">Chapter 1</a>
  <a href="/book/1/2.html">Chapter 2</a>
  <a href="/book/1/3.html">Chapter 3</a>
</body></html>
"""


def chapter_page(text):
    return f'<html><body><div id="content"><p>{text}</p></div></body></html>'


PAGES = {
    "https://a.example/s?q=dragon": DRAGON_PAGE,
    "https://a.example/book/1.html": INDEX_PAGE,
    "https://a.example/book/1/1.html": chapter_page("One"),
    "https://a.example/book/1/2.html": FetchFailed("https://a.example/book/1/2.html", 3, TimeoutError("timed out")),
    "https://a.example/book/1/3.html": chapter_page("Three"),
}


@pytest.fixture
def fetcher():
    return FakeFetcher(PAGES)


@pytest.fixture
def client(fetcher, tmp_path):
    app = create_app(
        registry=SourceRegistry(),
        fetcher=fetcher,
        cache=ResultCache(MemoryBackend()),
        sources=[make_source("A", "https://a.example")],
        start_monitor=False,
        data_dir=tmp_path,
    )
    with TestClient(app) as test_client:
        yield test_client


class TestSearch:
    def test_search_returns_absolute_records(self, client, fetcher):
        response = client.get("/search", params={"keyword": "dragon"})

        assert response.status_code == 200
        assert response.json() == [{
            "title": "Dragon King",
            "author": "Li",
            "cover": "https://a.example/img/1.jpg",
            "description": "A dragon.",
            "link": "https://a.example/book/1.html",
            "source": "A",
        }]

        again = client.get("/search", params={"keyword": "Dragon"})
        assert again.json() == response.json()
        assert fetcher.calls.count("https://a.example/s?q=dragon") == 1

    def test_blank_keyword(self, client):
        response = client.get("/search", params={"keyword": "  "})

        assert response.status_code == 400
        assert response.json() == {"error": "Please enter a search keyword", "availableSources": ["A"]}

    def test_no_source_has_results(self, client):
        response = client.get("/search", params={"keyword": "nothing"})

        assert response.status_code == 503
        body = response.json()
        assert body["triedSources"] == ["A"]
        assert body["availableSources"] == ["A"]


class TestSources:
    def test_register_and_list(self, client):
        response = client.post("/sources", json={
            "name": "B",
            "url": "https://b.example/",
            "selectors": {"item": "li", "title": "a", "link": "a@href"},
        })

        assert response.status_code == 201
        assert response.json()["url"] == "https://b.example"
        assert [s["name"] for s in client.get("/sources").json()] == ["A", "B"]

    def test_duplicate_url(self, client):
        response = client.post("/sources", json={
            "name": "Copy",
            "url": "https://a.example",
            "selectors": {"item": "li", "title": "a", "link": "a@href"},
        })

        assert response.status_code == 409
        assert "already registered" in response.json()["error"]

    def test_missing_fields(self, client):
        response = client.post("/sources", json={"name": "B"})

        assert response.status_code == 400

    def test_malformed_selector(self, client):
        response = client.post("/sources", json={
            "name": "B",
            "url": "https://b.example",
            "selectors": {"item": "li[", "title": "a", "link": "a@href"},
        })

        assert response.status_code == 400
        assert "item selector" in response.json()["error"]
        assert [s["name"] for s in client.get("/sources").json()] == ["A"]

    def test_toggle(self, client):
        response = client.patch("/sources/A", json={"enabled": False})

        assert response.status_code == 200
        assert response.json()["enabled"] is False
        assert response.json()["disabled"] is True
        assert client.patch("/sources/Nope", json={"enabled": True}).status_code == 404


class TestChapters:
    def test_chapter_index(self, client):
        response = client.get("/chapters", params={"url": "https://a.example/book/1.html"})

        assert response.status_code == 200
        assert [c["link"] for c in response.json()] == [
            "https://a.example/book/1/1.html",
            "https://a.example/book/1/2.html",
            "https://a.example/book/1/3.html",
        ]

    def test_content(self, client):
        response = client.get("/content", params={"url": "https://a.example/book/1/1.html"})

        assert response.json() == {"content": "One"}

    def test_content_fetch_failure(self, client):
        response = client.get("/content", params={"url": "https://a.example/book/1/2.html"})

        assert response.status_code == 502
        assert "after 3 attempts" in response.json()["error"]

    def test_content_requires_url(self, client):
        assert client.get("/content").status_code == 400


class TestDownloads:
    def test_download_merges_chapters(self, client):
        response = client.post("/downloads", json={"url": "https://a.example/book/1.html", "title": "Dragon King"})

        assert response.status_code == 200
        job_id = response.json()["job_id"]
        assert response.json()["total"] == 3

        job = client.get(f"/jobs/{job_id}").json()
        assert job["status"] == "done"
        assert job["message"] == "processed 3 of 3"

        download = client.get(f"/downloads/{job_id}")
        assert download.status_code == 200
        text = download.text
        assert text.startswith("Dragon King\n\n\nChapter 1\n\nOne\n\n\n")
        assert "Chapter 2\n\n[Failed to retrieve chapter:" in text
        assert text.endswith("Chapter 3\n\nThree\n\n\n")

    def test_download_range(self, client):
        response = client.post("/downloads", json={
            "url": "https://a.example/book/1.html", "title": "Dragon King", "start": 3, "end": 3,
        })
        job_id = response.json()["job_id"]

        assert response.json()["total"] == 1
        assert client.get(f"/downloads/{job_id}").text == "Dragon King\n\n\nChapter 3\n\nThree\n\n\n"

    @pytest.mark.parametrize("start, end", [(2, 5), (3, 2), (0, 1)])
    def test_invalid_range(self, client, start, end):
        response = client.post("/downloads", json={"url": "https://a.example/book/1.html", "start": start, "end": end})

        assert response.status_code == 400

    def test_unknown_job(self, client):
        assert client.get("/jobs/missing").status_code == 404
        assert client.get("/downloads/missing").status_code == 404


class TestFavorites:
    def test_add_list_delete(self, client):
        created = client.post("/favorites", json={"novel": {"title": "Dragon King", "link": "https://a.example/book/1.html"}})

        assert created.status_code == 201
        favorite_id = created.json()["id"]
        assert [f["title"] for f in client.get("/favorites").json()] == ["Dragon King"]

        assert client.delete(f"/favorites/{favorite_id}").status_code == 200
        assert client.get("/favorites").json() == []
        assert client.delete(f"/favorites/{favorite_id}").status_code == 404

    def test_title_required(self, client):
        assert client.post("/favorites", json={"novel": {"link": "x"}}).status_code == 400


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy", "service": "novelscout", "sources": 1}


def test_startup_skips_unregistrable_sources(fetcher, tmp_path):
    app = create_app(
        registry=SourceRegistry(),
        fetcher=fetcher,
        cache=ResultCache(MemoryBackend()),
        sources=[make_source("X", "ftp://x.example"), make_source("A", "https://a.example")],
        start_monitor=False,
        data_dir=tmp_path,
    )

    with TestClient(app) as client:
        assert [s["name"] for s in client.get("/sources").json()] == ["A"]
        assert client.get("/search", params={"keyword": "dragon"}).status_code == 200
