"""
Storage Layer - one Store contract, two backends.

1. JsonFileStore → one JSON array file per collection (development mode)
2. MongoStore → MongoDB collections with unique and TTL indexes

select_store() picks one at startup; everything else talks to the Store.
"""

from amem.storage.base import COLLECTIONS, CollectionSpec, Store, get_spec
from amem.storage.document import MongoStore
from amem.storage.json_store import JsonFileStore
from amem.storage.query import Page, Query, apply_query
from amem.storage.selector import select_store

__all__ = [
    "COLLECTIONS",
    "CollectionSpec",
    "Store",
    "get_spec",
    "MongoStore",
    "JsonFileStore",
    "Page",
    "Query",
    "apply_query",
    "select_store",
]
