"""Persistence for back office records."""

from gdp_backoffice.store.document_store import Collection, DocumentStore, ObjectStore

__all__ = [
    "Collection",
    "DocumentStore",
    "ObjectStore",
]
