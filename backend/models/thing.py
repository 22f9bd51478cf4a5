"""
Thing Model - an owned record that identities create and curate.

Columns map 1:1 to the things table built by the migrations:
- 20250102090000_create_things: id, owner_id, name, created_at, updated_at
- 20250109100000_add_thing_description: description
- 20250116120000_add_thing_image_key: image_key

image_key is a storage-relative key; the mapper turns it into a CDN URL.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, UTCDateTime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_thing_id() -> str:
    return str(uuid.uuid4())


class Thing(Base):
    __tablename__ = 'things'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_thing_id)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self):
        return f"<Thing {self.id} owner={self.owner_id}>"
