"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.orm import declarative_base

# Base class for SQLAlchemy models
Base = declarative_base()


class MessageRecord(Base):
    """
    SQLAlchemy model for storing SMS/MMS messages.

    Table: messages
    Primary Key: id (ensures idempotent upsert)
    seq preserves insertion order and breaks ties between equal timestamps;
    it is assigned on first insert and kept when a record is replaced.
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    seq = Column(Integer, nullable=False, index=True)
    from_msisdn = Column(String, nullable=False, index=True)
    to_msisdn = Column(String, nullable=False, index=True)
    body = Column(Text, nullable=False, default="")
    direction = Column(String, nullable=False)
    at = Column(String, nullable=False, index=True)  # ISO-8601 UTC string
    media_urls = Column(Text, nullable=False, default="[]")  # JSON array
