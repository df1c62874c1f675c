"""Store contracts and their in-memory, HTTP and PostgreSQL implementations."""
from .base import IdentityProvider, MetadataStore, ObjectStore
from .memory import MemoryMetadataStore, MemoryObjectStore, StaticIdentity
from .http import HttpObjectStore
from .postgres import PostgresMetadataStore

__all__ = [
    "IdentityProvider",
    "ObjectStore",
    "MetadataStore",
    "StaticIdentity",
    "MemoryObjectStore",
    "MemoryMetadataStore",
    "HttpObjectStore",
    "PostgresMetadataStore",
]
