# src/rekindle/core/checkpoint/schema.py
"""SQLAlchemy table definitions for the SQL checkpoint store.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with multiple database backends.
"""

from sqlalchemy import Column, DateTime, Index, MetaData, String, Table, Text


metadata = MetaData()

# One row per storage key. Writes overwrite in place: the store holds the
# latest snapshot only, never a history.
checkpoints_table = Table(
    "checkpoints",
    metadata,
    Column("storage_key", String(512), primary_key=True),
    Column("snapshot_json", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

Index("ix_checkpoints_updated_at", checkpoints_table.c.updated_at)
