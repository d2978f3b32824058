"""HTML extraction and packaging utilities.

This module turns raw HTML into normalised records. It never fetches
anything itself: callers pass the page source together with the data that
describes the site, either a ``SelectorMap`` (search result listings) or a
source kind whose ``SiteRules`` name the chapter index and chapter body
selectors. Kinds without rules use simple heuristics: chapter links are
anchors mentioning "chapter" or ``第…章``, and the body is taken from the
first common content container that holds any text.

Parsing uses ``BeautifulSoup`` with the ``lxml`` parser. Relative links and
cover images are resolved against the page or source base URL so that the
client only ever sees absolute URLs.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from .models import AssembledDocument, ChapterRef, NovelRecord, SelectorMap
from .sources import rules_for

CHAPTER_PATTERN = re.compile(r"chapter|第\s*[0-9零一二三四五六七八九十百千万两]+\s*[章节回]", re.IGNORECASE)

CONTENT_IDS = ["content", "chapter", "chapter-content", "chaptercontent", "chapterContent", "text"]
CONTENT_CLASSES = ["chapter-content", "read-content", "entry-content", "post-content", "content"]


def _soup(html_doc: str) -> BeautifulSoup:
    return BeautifulSoup(html_doc or "", "lxml")


def absolutize(value: str, base_url: str) -> str:
    """Resolve ``value`` against ``base_url``; absolute URLs pass through."""
    value = (value or "").strip()
    if not value:
        return ""
    return urljoin(base_url, value)


def _select_value(node: Tag, rule: str) -> str:
    """Evaluate a ``css`` or ``css@attr`` rule inside ``node``."""
    if not rule:
        return ""
    selector, _, attr = rule.partition("@")
    target = node.select_one(selector.strip()) if selector.strip() else node
    if target is None:
        return ""
    if attr:
        value = target.get(attr.strip(), "")
        if isinstance(value, list):
            value = " ".join(value)
        return str(value).strip()
    return target.get_text(" ", strip=True)


def _clean(text: str, labels: List[str]) -> str:
    for label in labels:
        text = text.replace(label, "")
    return text.strip()


def extract_list(html_doc: str, selectors: SelectorMap, base_url: str, source: str = "") -> List[NovelRecord]:
    """Extract search results described by ``selectors``.

    Items whose title is empty after trimming are skipped. Optional fields
    that are absent come back as empty strings.
    """
    soup = _soup(html_doc)
    records: List[NovelRecord] = []
    for item in soup.select(selectors.item):
        title = _clean(_select_value(item, selectors.title), selectors.strip)
        if not title:
            continue
        records.append(
            NovelRecord(
                title=title,
                author=_clean(_select_value(item, selectors.author), selectors.strip),
                cover=absolutize(_select_value(item, selectors.cover), base_url),
                description=_clean(_select_value(item, selectors.description), selectors.strip),
                link=absolutize(_select_value(item, selectors.link), base_url),
                source=source,
            )
        )
    return records


def extract_chapters(html_doc: str, kind: Optional[str], base_url: str) -> List[ChapterRef]:
    """Return the chapter index of a novel page in document order.

    Duplicate links are dropped, keeping the first occurrence. Anchors
    without text are titled ``Chapter N`` after their position.
    """
    soup = _soup(html_doc)
    rules = rules_for(kind)
    if rules.chapter_list:
        anchors = soup.select(rules.chapter_list)
    else:
        anchors = [
            a for a in soup.find_all("a", href=True)
            if CHAPTER_PATTERN.search(a.get_text(strip=True)) or CHAPTER_PATTERN.search(a["href"])
        ]

    chapters: List[ChapterRef] = []
    seen: set[str] = set()
    for a in anchors:
        href = (a.get("href") or "").strip()
        if not href or href.startswith(("javascript:", "#")):
            continue
        link = absolutize(href, base_url)
        if link in seen:
            continue
        seen.add(link)
        title = a.get_text(" ", strip=True) or f"Chapter {len(chapters) + 1}"
        chapters.append(ChapterRef(title=title, link=link))
    return chapters


def _paragraphs(container: Tag) -> str:
    for tag in container.find_all(["script", "style", "noscript"]):
        tag.decompose()
    paragraphs = [p.get_text(" ", strip=True) for p in container.find_all("p")]
    paragraphs = [p for p in paragraphs if p]
    if paragraphs:
        return "\n\n".join(paragraphs)
    # Many sites separate lines with <br> inside a single div.
    lines = [line.strip() for line in container.get_text("\n").splitlines()]
    return "\n\n".join(line for line in lines if line)


def extract_content(html_doc: str, kind: Optional[str]) -> str:
    """Return the readable text of a chapter page, or ``""`` if none is found."""
    soup = _soup(html_doc)
    rules = rules_for(kind)
    candidates: List[Tag] = []
    if rules.content:
        candidates.extend(soup.select(rules.content))
    for tag_id in CONTENT_IDS:
        div = soup.find(id=tag_id)
        if div:
            candidates.append(div)
    for class_name in CONTENT_CLASSES:
        div = soup.find("div", class_=class_name)
        if div:
            candidates.append(div)
    article = soup.find("article")
    if article:
        candidates.append(article)

    for candidate in candidates:
        text = _paragraphs(candidate)
        if text:
            return text
    # Fallback: gather all <p> tags in the page
    texts = [p.get_text(" ", strip=True) for p in soup.find_all("p")]
    return "\n\n".join(t for t in texts if t)


def package_txt(name: str, document: AssembledDocument, dest_dir: str) -> str:
    """Write an assembled document into a UTF-8 encoded .txt file.

    The file is written to ``dest_dir`` as ``<name>.txt`` and the function
    returns its path.
    """
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)
    path = dest / f"{name}.txt"
    with open(path, "w", encoding="utf-8") as f:
        f.write(document.render())
    return str(path)
