"""
Persistence layer for SupportDesk Chat.
"""

from .store import InMemoryRecordStore, Record, RecordStore

__all__ = ["InMemoryRecordStore", "Record", "RecordStore"]
