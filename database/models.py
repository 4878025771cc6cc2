"""
SQLAlchemy ORM models for SupportDesk Chat.

Staff, queue entries, assignments and sessions are persisted as namespaced
JSON records so the routing layer never depends on table layout.
"""

from datetime import datetime

from sqlalchemy import Column, String, DateTime, JSON, Index
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class StoredRecord(Base):
    __tablename__ = "records"

    namespace = Column(String(32), primary_key=True)  # staff, queue, assignments, sessions
    key = Column(String(512), primary_key=True)  # session ids, staff ids, auth tokens
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_records_namespace", "namespace"),
    )
