import json

from novelscout.sources import DEFAULT_SOURCES, load_sources, rules_for


def test_builtin_sources_only():
    sources = load_sources("")

    assert [s.name for s in sources] == [d["name"] for d in DEFAULT_SOURCES]
    assert sources[0].search_url_for("dragon") == "https://www.10000txt.com/s?q=dragon"


def test_sources_file_is_appended(tmp_path):
    path = tmp_path / "sources.json"
    path.write_text(json.dumps([{
        "name": "B",
        "url": "https://b.example",
        "search_url": "/search.php?keyword={keyword}",
        "selectors": {"item": "tr", "title": "td a", "link": "td a@href"},
    }]), encoding="utf-8")

    sources = load_sources(str(path))

    assert sources[-1].name == "B"
    assert sources[-1].search_url_for("a b") == "https://b.example/search.php?keyword=a%20b"


def test_broken_sources_file_is_ignored(tmp_path):
    path = tmp_path / "sources.json"
    path.write_text("[{", encoding="utf-8")

    assert len(load_sources(str(path))) == len(DEFAULT_SOURCES)
    assert len(load_sources(str(tmp_path / "missing.json"))) == len(DEFAULT_SOURCES)


def test_unknown_kind_uses_generic_rules():
    assert rules_for("nope") == rules_for("generic")
    assert rules_for("biquge").content == "#content"
