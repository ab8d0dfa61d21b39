"""File parsers for different document types."""

import csv
import html
import io
import json
import logging
import os
import re
from typing import Any, Callable, Dict, List, Tuple

from knowledge_base.schemas.ingestion import ParsedDocument

logger = logging.getLogger(__name__)

ParserFunc = Callable[[str, str], Tuple[str, Dict[str, Any]]]

# Dictionary mapping file extensions to parser functions
PARSER_REGISTRY: Dict[str, ParserFunc] = {}

MARKDOWN_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$", re.MULTILINE)
HTML_TAG = re.compile(r"<[^>]+>")
HTML_DROP_BLOCKS = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
HTML_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


def register_parser(extensions: List[str]):
    """Decorator to register a parser function for specific file extensions."""
    def decorator(func):
        for ext in extensions:
            PARSER_REGISTRY[ext.lower()] = func
        return func
    return decorator


def supported_extensions() -> List[str]:
    return sorted(PARSER_REGISTRY)


class RegistryParser:
    """Parser that dispatches on the file extension through ``PARSER_REGISTRY``."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def parse(self, raw_file: bytes, file_name: str) -> ParsedDocument:
        ext = os.path.splitext(file_name)[1].lower()
        parser = PARSER_REGISTRY.get(ext)
        if parser is None:
            logger.warning(f"No parser found for extension {ext}, using text parser")
            parser = PARSER_REGISTRY[".txt"]

        # Decoding errors propagate; the caller fails the session
        content = raw_file.decode(self.encoding)
        text, metadata = parser(content, file_name)
        metadata.setdefault("file_name", file_name)
        metadata["char_count"] = len(text)

        structured_elements = [
            {"type": "heading", "level": len(match.group(1)), "text": match.group(2)}
            for match in MARKDOWN_HEADING.finditer(text)
        ]
        return ParsedDocument(content=text, structured_elements=structured_elements, metadata=metadata)


@register_parser([".txt"])
def parse_text(content: str, file_name: str) -> Tuple[str, Dict[str, Any]]:
    """Parse a plain text file."""
    metadata = {
        "title": os.path.basename(file_name),
        "format": "text",
        "lines": content.count("\n") + 1
    }
    return content, metadata


@register_parser([".md", ".markdown"])
def parse_markdown(content: str, file_name: str) -> Tuple[str, Dict[str, Any]]:
    """Parse a markdown file.

    The title comes from the first top-level heading when there is one.
    """
    title = os.path.basename(file_name)
    lines = content.split("\n")

    for line in lines:
        if line.startswith("# "):
            title = line[2:].strip()
            break

    metadata = {
        "title": title,
        "format": "markdown",
        "lines": len(lines)
    }
    return content, metadata


@register_parser([".csv"])
def parse_csv(content: str, file_name: str) -> Tuple[str, Dict[str, Any]]:
    """Parse a CSV file into one ``header: value`` line group per row."""
    reader = csv.reader(io.StringIO(content))
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    if not rows:
        return "", {"title": os.path.basename(file_name), "format": "csv", "rows": 0}

    header, records = rows[0], rows[1:]
    blocks = []
    for record in records:
        pairs = [f"{name}: {value}" for name, value in zip(header, record) if value.strip()]
        blocks.append("\n".join(pairs))

    metadata = {
        "title": os.path.basename(file_name),
        "format": "csv",
        "columns": header,
        "rows": len(records),
    }
    return "\n\n".join(blocks), metadata


@register_parser([".json"])
def parse_json(content: str, file_name: str) -> Tuple[str, Dict[str, Any]]:
    """Parse a JSON file into an indented, human readable rendering."""
    data = json.loads(content)
    metadata = {
        "title": os.path.basename(file_name),
        "format": "json",
        "root_type": type(data).__name__,
    }
    if isinstance(data, dict):
        metadata["keys"] = list(data)[:20]
    elif isinstance(data, list):
        metadata["items"] = len(data)
    return json.dumps(data, indent=2, ensure_ascii=False), metadata


@register_parser([".html", ".htm"])
def parse_html(content: str, file_name: str) -> Tuple[str, Dict[str, Any]]:
    """Parse an HTML file by stripping markup."""
    title_match = HTML_TITLE.search(content)
    title = html.unescape(title_match.group(1)).strip() if title_match else os.path.basename(file_name)

    text = HTML_DROP_BLOCKS.sub(" ", content)
    text = re.sub(r"<(br|/p|/div|/li|/h[1-6])[^>]*>", "\n", text, flags=re.IGNORECASE)
    text = html.unescape(HTML_TAG.sub(" ", text))
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.split("\n")]
    text = "\n".join(line for line in lines if line)

    metadata = {
        "title": title,
        "format": "html",
        "lines": text.count("\n") + 1 if text else 0,
    }
    return text, metadata
