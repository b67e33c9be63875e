"""Search index adapters."""

from docintel.providers.search_index.chromadb_index import ChromaDBSearchIndex

__all__ = ["ChromaDBSearchIndex"]
