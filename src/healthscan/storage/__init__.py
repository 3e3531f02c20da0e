"""Persistence layer: a JSON key-value store on SQLAlchemy."""

from healthscan.storage.db import Database, db
from healthscan.storage.kv import KVStore
from healthscan.storage.models import Base, KVEntry

__all__ = ["Base", "Database", "KVEntry", "KVStore", "db"]
