"""Ingestion pipeline: parsing, chunking and the session stage machine."""

from knowledge_base.services.ingestion.chunking import DocumentChunker
from knowledge_base.services.ingestion.parsers import RegistryParser, register_parser
from knowledge_base.services.ingestion.service import IngestionSessionManager

__all__ = ["DocumentChunker", "RegistryParser", "register_parser", "IngestionSessionManager"]
