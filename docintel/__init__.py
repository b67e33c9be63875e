"""docintel: multi-tenant document ingestion, semantic search and grounded QA."""

__version__ = "0.1.0"
