"""Shared fixtures for novelscout tests."""

from typing import Dict, List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest

from novelscout import db
from novelscout.errors import FetchFailed
from novelscout.models import SourceDefinition


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Point every test at its own SQLite file."""
    path = tmp_path / "novelscout.db"
    monkeypatch.setattr(db, "DB_PATH", str(path))
    db.init_db()
    return path


SELECTORS = {
    "item": ".book-list li",
    "title": "h4 a",
    "link": "h4 a@href",
    "author": ".author",
    "cover": ".book-img img@src",
    "description": ".intro",
    "strip": ["作者："],
}


def make_source(name: str, url: str, **overrides) -> SourceDefinition:
    data = {"name": name, "url": url, "kind": "generic", "selectors": SELECTORS}
    data.update(overrides)
    return SourceDefinition.model_validate(data)


def search_page(*books: Dict[str, str]) -> str:
    """Render a search result page in the layout described by ``SELECTORS``."""
    items = []
    for book in books:
        items.append(
            "<li>"
            f"<div class='book-img'><img src='{book.get('cover', '')}'></div>"
            f"<h4><a href='{book.get('link', '')}'>{book.get('title', '')}</a></h4>"
            f"<p class='author'>作者：{book.get('author', '')}</p>"
            f"<p class='intro'>{book.get('intro', '')}</p>"
            "</li>"
        )
    return f"<html><body><ul class='book-list'>{''.join(items)}</ul></body></html>"


class FakeFetcher:
    """Stands in for ``ResilientFetcher``; serves canned pages by URL.

    A page value that is an exception is raised instead of returned. Unknown
    URLs fail the way an exhausted fetcher does.
    """

    def __init__(self, pages: Optional[Dict[str, Union[str, Exception]]] = None):
        self.pages = dict(pages or {})
        self.calls: List[str] = []

    async def fetch(self, url, headers=None, delay=0.0, timeout=None):
        self.calls.append(url)
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        if page is None:
            raise FetchFailed(url, 3, ConnectionError("connection refused"))
        return page


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


def make_page(html: str = "<html><body>ok</body></html>", status: int = 200) -> MagicMock:
    page = MagicMock()
    page.goto = AsyncMock(return_value=MagicMock(status=status))
    page.content = AsyncMock(return_value=html)
    page.close = AsyncMock()
    page.set_extra_http_headers = AsyncMock()
    return page


def make_browser(page: Optional[MagicMock] = None) -> MagicMock:
    browser = MagicMock()
    browser.is_connected.return_value = True
    browser.new_page = AsyncMock(return_value=page or make_page())
    browser.close = AsyncMock()
    return browser


def make_playwright_factory(launch: AsyncMock):
    """Return (factory, playwright) mimicking ``async_playwright``."""
    playwright = MagicMock()
    playwright.chromium.launch = launch
    playwright.stop = AsyncMock()
    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    return MagicMock(return_value=starter), playwright
