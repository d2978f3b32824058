"""Records exchanged between the registry, extractor, cache and HTTP layer.

All models are pydantic so that FastAPI can validate request bodies and
serialise responses directly, and so the cache can store payloads as JSON.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import quote, urljoin, urlparse

from pydantic import BaseModel, Field

from .errors import InvalidQuery


class SelectorMap(BaseModel):
    """Extraction rules for one source's search result listing.

    ``item`` selects each result block; the remaining rules are evaluated
    inside that block. A rule is a CSS selector, optionally followed by
    ``@attr`` to read an attribute instead of the element text, e.g.
    ``"h4 a@href"``. An empty rule means the site does not expose the field.
    """

    item: str
    title: str
    link: str
    author: str = ""
    cover: str = ""
    description: str = ""
    # Label text removed from extracted values, e.g. "作者：".
    strip: List[str] = Field(default_factory=list)


class SourceDefinition(BaseModel):
    name: str
    url: str
    search_url: str = "/s?q={keyword}"
    kind: str = "generic"
    selectors: SelectorMap
    headers: Dict[str, str] = Field(default_factory=dict)
    delay: float = 0.0
    enabled: bool = True
    # Operator switch; health probes never clear it.
    disabled: bool = False
    latency: Optional[float] = None
    last_checked: Optional[datetime] = None

    @property
    def host(self) -> str:
        return urlparse(self.url).netloc.lower()

    def search_url_for(self, keyword: str) -> str:
        """Return the absolute search URL for ``keyword``."""
        path = self.search_url.replace("{keyword}", quote(keyword))
        return urljoin(self.url, path)


class SearchQuery(BaseModel):
    keyword: str
    source: Optional[str] = None

    model_config = {"frozen": True}

    @classmethod
    def parse(cls, keyword: Optional[str], source: Optional[str] = None) -> "SearchQuery":
        """Build a query, rejecting keywords that are blank after trimming."""
        keyword = (keyword or "").strip()
        if not keyword:
            raise InvalidQuery("Please enter a search keyword")
        return cls(keyword=keyword, source=(source or "").strip() or None)

    def signature(self) -> str:
        """Normalised cache key covering both keyword and source filter."""
        keyword = re.sub(r"\s+", " ", self.keyword).casefold()
        return f"search:{keyword}|{self.source or '*'}"


class NovelRecord(BaseModel):
    title: str
    author: str = ""
    cover: str = ""
    description: str = ""
    link: str = ""
    source: str = ""


class ChapterRef(BaseModel):
    title: str
    link: str


class ChapterContent(BaseModel):
    chapter: ChapterRef
    content: str
    ok: bool = True
    error: Optional[str] = None


class AssembledDocument(BaseModel):
    title: str = ""
    sections: List[ChapterContent] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return sum(1 for section in self.sections if not section.ok)

    def render(self) -> str:
        """Merge all sections into one plain-text document.

        Each chapter begins with its title on a separate line followed by a
        blank line and then the chapter body, the same layout used for
        packaged TXT downloads.
        """
        parts: List[str] = []
        if self.title:
            parts.append(self.title.strip() + "\n\n\n")
        for section in self.sections:
            parts.append(section.chapter.title.strip() + "\n\n")
            parts.append(section.content.strip() + "\n\n\n")
        return "".join(parts)


class SourceStatus(BaseModel):
    """Public view of a registered source."""

    name: str
    url: str
    kind: str
    enabled: bool
    disabled: bool = False
    latency: Optional[float] = None
    last_checked: Optional[datetime] = None

    @classmethod
    def from_definition(cls, source: SourceDefinition) -> "SourceStatus":
        return cls(
            name=source.name,
            url=source.url,
            kind=source.kind,
            enabled=source.enabled,
            disabled=source.disabled,
            latency=source.latency,
            last_checked=source.last_checked,
        )


class SourceToggle(BaseModel):
    enabled: bool


class DownloadRequest(BaseModel):
    url: str
    source: Optional[str] = None
    title: str = ""
    start: Optional[int] = None
    end: Optional[int] = None
