from __future__ import annotations

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from tracker.db import Base


class Event(Base):
    """
    One row per ingested event. Append-only: rows are never updated.

    Column names are the ones the first tracker release wrote (ts, ip, ua, ...)
    so an existing events.db is picked up as-is. The table itself is created
    and evolved by tracker.schema, not by metadata.create_all().
    """

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    occurred_at: Mapped[int] = mapped_column("ts", Integer, nullable=False)

    source_ip: Mapped[str | None] = mapped_column("ip", Text, nullable=True)
    user_agent: Mapped[str | None] = mapped_column("ua", Text, nullable=True)
    page_url: Mapped[str | None] = mapped_column("url", Text, nullable=True)
    referrer_url: Mapped[str | None] = mapped_column("ref", Text, nullable=True)
    visitor_id: Mapped[str | None] = mapped_column("uid", Text, nullable=True)
    delivery_kind: Mapped[str] = mapped_column("kind", Text, default="pixel")  # pixel|beacon

    event_type: Mapped[str] = mapped_column(Text, default="page_view")
    event_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    element_tag: Mapped[str | None] = mapped_column(Text, nullable=True)
    element_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    link_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    button_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    form_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    duration_ms: Mapped[int | None] = mapped_column("duration", Integer, nullable=True)
    client_timestamp: Mapped[int | None] = mapped_column(Integer, nullable=True)


class SchemaMigration(Base):
    __tablename__ = "schema_migrations"

    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text)
    applied_at: Mapped[int] = mapped_column(Integer)
