"""Utilities for chunking documents into manageable pieces."""

import hashlib
import logging
import re
from typing import Any, Dict, List, Optional

import tiktoken

from knowledge_base.core.config import settings
from knowledge_base.schemas.ingestion import ChunkDraft, ParsedDocument

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"  # Model to use for token counting

# Section headers pattern (common in documents)
SECTION_HEADER_PATTERNS = [
    r'^#+\s+.+$',  # Markdown headers
    r'^\s*(?:SECTION|CHAPTER|PART)\s+\d+.*$',  # Section/Chapter labels
    r'^\s*\d+\.\d*\s+[A-Z].*$',  # Numbered sections (1.1, 1.2.3, etc.)
]

SECTION_HEADER_REGEX = re.compile('|'.join(f'(?:{pattern})' for pattern in SECTION_HEADER_PATTERNS), re.MULTILINE)
MARKDOWN_HEADER_LEVEL = re.compile(r'^(#+)\s+')
CODE_FENCE = re.compile(r'```|^( {4}|\t)\S', re.MULTILINE)
TABLE_ROW = re.compile(r'^\s*\|.*\|\s*$', re.MULTILINE)
IMAGE_REF = re.compile(r'!\[[^\]]*\]\([^)]+\)|<img\s', re.IGNORECASE)

STRATEGIES = ("smart", "sections", "tokens")


class DocumentChunker:
    """Class for chunking documents into smaller pieces.

    Output is deterministic for identical input and configuration.
    """

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        model: str = DEFAULT_MODEL,
        tokenizer: Any = None,
    ):
        """Initialize the document chunker.

        Args:
            chunk_size: Maximum size of chunks in tokens
            chunk_overlap: Overlap between chunks in tokens
            model: Model to use for token counting
            tokenizer: Object with ``encode``/``decode``; tiktoken is loaded lazily when omitted
        """
        self.chunk_size = chunk_size or settings.CHUNK_SIZE_TOKENS
        self.chunk_overlap = settings.CHUNK_OVERLAP_TOKENS if chunk_overlap is None else chunk_overlap
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        self.model = model
        self._tokenizer = tokenizer

    @property
    def tokenizer(self):
        if self._tokenizer is None:
            try:
                self._tokenizer = tiktoken.encoding_for_model(self.model)
            except Exception as e:
                logger.warning(f"Failed to load tokenizer for {self.model}: {e}. Using cl100k_base instead.")
                self._tokenizer = tiktoken.get_encoding("cl100k_base")
        return self._tokenizer

    def count_tokens(self, text: str) -> int:
        """Count the number of tokens in text."""
        return len(self.tokenizer.encode(text))

    def chunk_by_tokens(self, content: str, chunk_size: Optional[int] = None) -> List[str]:
        """Split text into overlapping windows of ``chunk_size`` tokens."""
        if not content.strip():
            return []

        chunk_size = chunk_size or self.chunk_size
        overlap = min(self.chunk_overlap, chunk_size - 1)
        step = chunk_size - overlap
        tokens = self.tokenizer.encode(content)
        chunks = []

        for i in range(0, len(tokens), step):
            chunk_tokens = tokens[i:i + chunk_size]

            # Fold a tiny tail into the previous window instead of emitting it
            if chunks and len(chunk_tokens) <= overlap:
                break
            chunks.append(self.tokenizer.decode(chunk_tokens))
            if i + chunk_size >= len(tokens):
                break

        return chunks

    def chunk_by_sections(self, content: str) -> List[str]:
        """Split text by section headers."""
        if not content.strip():
            return []

        matches = list(SECTION_HEADER_REGEX.finditer(content))

        # If no sections found, return the whole content
        if not matches:
            return [content.strip()]

        chunks = []
        # Everything before the first header is an intro section
        if matches[0].start() > 0:
            intro_text = content[:matches[0].start()].strip()
            if intro_text:
                chunks.append(intro_text)

        for i, match in enumerate(matches):
            section_end = matches[i + 1].start() if i < len(matches) - 1 else len(content)
            section_text = content[match.start():section_end].strip()
            if section_text:
                chunks.append(section_text)

        return chunks

    def chunk_by_separator(
        self,
        content: str,
        separators: Optional[List[str]] = None,
        chunk_size: Optional[int] = None,
    ) -> List[str]:
        """Split text at natural boundaries, packing pieces up to ``chunk_size`` tokens.

        Pieces still too large after the last separator fall back to token windows.
        """
        if not content.strip():
            return []

        separators = separators if separators is not None else ["\n\n", "\n", ". ", " "]
        chunk_size = chunk_size or self.chunk_size

        if self.count_tokens(content) <= chunk_size:
            return [content.strip()]
        if not separators:
            return self.chunk_by_tokens(content, chunk_size)

        separator, rest = separators[0], separators[1:]
        chunks: List[str] = []
        current = ""

        for segment in content.split(separator):
            if not segment.strip():
                continue
            candidate = f"{current}{separator}{segment}" if current else segment
            if self.count_tokens(candidate) <= chunk_size:
                current = candidate
                continue

            if current:
                chunks.append(current.strip())
                current = ""
            if self.count_tokens(segment) > chunk_size:
                chunks.extend(self.chunk_by_separator(segment, rest, chunk_size))
            else:
                current = segment

        if current.strip():
            chunks.append(current.strip())
        return chunks

    def smart_chunking(self, content: str, chunk_size: Optional[int] = None) -> List[str]:
        """Chunk by sections first, splitting any oversized section further."""
        chunk_size = chunk_size or self.chunk_size
        result_chunks = []
        for section in self.chunk_by_sections(content):
            if self.count_tokens(section) > chunk_size:
                result_chunks.extend(self.chunk_by_separator(section, chunk_size=chunk_size))
            else:
                result_chunks.append(section)
        return result_chunks

    def describe_chunk(self, text: str) -> Dict[str, Any]:
        """Per-chunk metadata: token count, hash, section title and content flags."""
        metadata: Dict[str, Any] = {
            "token_count": self.count_tokens(text),
            "chunk_hash": hashlib.md5(text.encode()).hexdigest(),
            "has_code": bool(CODE_FENCE.search(text)),
            "has_table": bool(TABLE_ROW.search(text)),
            "has_image": bool(IMAGE_REF.search(text)),
        }

        section_match = SECTION_HEADER_REGEX.search(text)
        if section_match:
            header = section_match.group(0).strip()
            level = MARKDOWN_HEADER_LEVEL.match(header)
            metadata["section_title"] = header.lstrip("#").strip()
            metadata["hierarchy_level"] = len(level.group(1)) if level else 1
        return metadata

    def chunk(self, parsed: ParsedDocument, hints: Optional[Dict[str, Any]] = None) -> List[ChunkDraft]:
        """Chunk a parsed document.

        Args:
            parsed: Parser output
            hints: Optional ``strategy`` (smart, sections, tokens) and ``chunk_size``

        Returns:
            Ordered chunk drafts with ``chunk_index`` 0..n-1
        """
        hints = hints or {}
        strategy = hints.get("strategy", "smart")
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown chunking strategy: {strategy}")
        chunk_size = hints.get("chunk_size") or self.chunk_size

        content = parsed.content
        if not content.strip():
            return []

        if strategy == "tokens":
            texts = self.chunk_by_tokens(content, chunk_size)
        elif strategy == "sections":
            texts = self.chunk_by_sections(content)
        else:
            texts = self.smart_chunking(content, chunk_size)

        texts = [text for text in texts if text.strip()]
        logger.debug(f"Chunked {len(content)} chars into {len(texts)} chunks using '{strategy}' strategy")
        return [
            ChunkDraft(text=text, chunk_index=i, metadata=self.describe_chunk(text))
            for i, text in enumerate(texts)
        ]
