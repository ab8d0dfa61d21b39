"""Agent knowledge base: ingestion, preview gate, batched deletion."""

__version__ = "0.1.0"
