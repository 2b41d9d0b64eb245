"""Store adapter layer — document and blob backends behind narrow protocols."""

from filekeep.store.blobs import LocalBlobStore
from filekeep.store.database import DatabaseDocumentStore, create_tables
from filekeep.store.memory import MemoryDocumentStore
from filekeep.store.protocol import BlobStore, DocumentStore, ItemKey, StoredItem

__all__ = [
    "BlobStore",
    "DatabaseDocumentStore",
    "DocumentStore",
    "ItemKey",
    "LocalBlobStore",
    "MemoryDocumentStore",
    "StoredItem",
    "create_tables",
]
