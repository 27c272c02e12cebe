"""Persistence for failure records, replies, and the shared SQLite database."""

from .database import Database, from_timestamp, to_timestamp, utcnow
from .failures import FailureRecord, FailureStore
from .replies import ReplyLog, ReplyRecord

__all__ = [
    "Database",
    "FailureRecord",
    "FailureStore",
    "ReplyLog",
    "ReplyRecord",
    "utcnow",
    "to_timestamp",
    "from_timestamp",
]
