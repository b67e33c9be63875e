"""Persistence adapters: documents, chunks, jobs and raw uploads."""

from docintel.providers.storage.filesystem_blob_store import FilesystemBlobStore
from docintel.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from docintel.providers.storage.sqlite_document_store import SQLiteDocumentStore
from docintel.providers.storage.sqlite_job_queue import SQLiteJobQueue

__all__ = [
    "FilesystemBlobStore",
    "SQLiteChunkStore",
    "SQLiteDocumentStore",
    "SQLiteJobQueue",
]
