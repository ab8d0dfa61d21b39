import pytest

from knowledge_base.services.ingestion.parsers import RegistryParser, supported_extensions


@pytest.fixture
def parser():
    return RegistryParser()


def test_registry_covers_configured_types():
    assert {".txt", ".md", ".markdown", ".csv", ".json", ".html"} <= set(supported_extensions())


def test_text(parser):
    parsed = parser.parse(b"line one\nline two", "notes.txt")

    assert parsed.content == "line one\nline two"
    assert parsed.metadata["format"] == "text"
    assert parsed.metadata["lines"] == 2
    assert parsed.metadata["char_count"] == 17


def test_markdown_title_and_headings(parser):
    parsed = parser.parse(b"# Handbook\n\nIntro\n\n## Leave policy\nDetails", "handbook.md")

    assert parsed.metadata["title"] == "Handbook"
    assert parsed.structured_elements == [
        {"type": "heading", "level": 1, "text": "Handbook"},
        {"type": "heading", "level": 2, "text": "Leave policy"},
    ]


def test_csv_rows_become_blocks(parser):
    parsed = parser.parse(b"name,role\nAda,engineer\nGrace,admiral\n", "team.csv")

    assert parsed.content == "name: Ada\nrole: engineer\n\nname: Grace\nrole: admiral"
    assert parsed.metadata["rows"] == 2
    assert parsed.metadata["columns"] == ["name", "role"]


def test_json_is_pretty_printed(parser):
    parsed = parser.parse(b'{"product": "kb", "tags": ["a"]}', "data.json")

    assert '"product": "kb"' in parsed.content
    assert parsed.metadata["keys"] == ["product", "tags"]
    assert parsed.metadata["root_type"] == "dict"


def test_html_markup_is_stripped(parser):
    raw = (b"<html><head><title>Guide &amp; FAQ</title><style>p {color: red}</style></head>"
           b"<body><p>Hello <b>world</b></p><script>var x = 1;</script><p>Bye</p></body></html>")

    parsed = parser.parse(raw, "guide.html")

    assert parsed.metadata["title"] == "Guide & FAQ"
    assert "color" not in parsed.content
    assert "var x" not in parsed.content
    assert "Hello world" in parsed.content
    assert "Bye" in parsed.content


def test_unknown_extension_falls_back_to_text(parser):
    parsed = parser.parse(b"plain", "README")

    assert parsed.content == "plain"
    assert parsed.metadata["format"] == "text"


def test_invalid_encoding_raises(parser):
    with pytest.raises(UnicodeDecodeError):
        parser.parse(b"\xff\xfe\xfa", "notes.txt")
