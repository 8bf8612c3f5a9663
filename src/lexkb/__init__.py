"""LexKB - bilingual knowledge-base semantic search."""

__version__ = "0.1.0"
