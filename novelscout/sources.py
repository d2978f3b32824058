"""Built-in source definitions and per-kind page rules.

Sources are plain data: adding a site means adding an entry here, to the
JSON file named by ``NOVELSCOUT_SOURCES_FILE``, or posting it to
``/sources``. Nothing elsewhere in the code branches on a site's name.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional

from loguru import logger

from .models import SourceDefinition


class SiteRules(NamedTuple):
    """CSS selectors for a kind of site's chapter index and chapter pages.

    An empty selector falls back to the generic heuristics in
    ``extractor``.
    """

    chapter_list: str = ""
    content: str = ""


SITE_RULES: Dict[str, SiteRules] = {
    "generic": SiteRules(),
    "10000txt": SiteRules(
        chapter_list="#list dd a, .chapter-list li a, ul.chapters li a",
        content="#content, .read-content, #chaptercontent",
    ),
    "biquge": SiteRules(
        chapter_list="#list dl dd a",
        content="#content",
    ),
}


DEFAULT_SOURCES: List[dict] = [
    {
        "name": "万书网",
        "url": "https://www.10000txt.com",
        "search_url": "/s?q={keyword}",
        "kind": "10000txt",
        "selectors": {
            "item": ".book-list li",
            "title": "h4 a",
            "link": "h4 a@href",
            "author": ".author",
            "cover": ".book-img img@src",
            "description": ".intro",
            "strip": ["作者：", "作者:"],
        },
    },
]


def rules_for(kind: Optional[str]) -> SiteRules:
    return SITE_RULES.get(kind or "generic", SITE_RULES["generic"])


def load_sources(path: str = "") -> List[SourceDefinition]:
    """Return the built-in sources followed by those in ``path`` (if any).

    The file must contain a JSON list of source objects. A missing or
    malformed file is logged and ignored so the service can still start
    with the built-in set.
    """
    definitions = [SourceDefinition.model_validate(item) for item in DEFAULT_SOURCES]
    if not path:
        return definitions
    try:
        items = json.loads(Path(path).read_text(encoding="utf-8"))
        definitions.extend(SourceDefinition.model_validate(item) for item in items)
    except (OSError, ValueError) as e:
        logger.error(f"Could not load sources file {path}: {e}")
    return definitions
