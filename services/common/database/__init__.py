"""Database connection and utilities."""

from .mongodb import MongoRecordStore, NotFoundError, StoreError

__all__ = ["MongoRecordStore", "NotFoundError", "StoreError"]
