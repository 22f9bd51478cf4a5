"""
Thing Service - business rules for owned Things.

Rules:
- Any authenticated identity may create a Thing; it becomes the owner
- Only the owner (or an identity with the `admin` role) may read, update
  or delete a Thing
- Listing returns the caller's own Things; admins see all of them

Mutations are conditional UPDATE/DELETE statements keyed on id and owner,
so a racing delete or ownership change turns into NotFound instead of a
lost update. Reads retry transient storage failures; writes never retry.

The service returns Thing entities and raises the error taxonomy. It never
builds responses.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from errors import Forbidden, InvalidRequest, NotFound
from models.thing import Thing, utcnow
from services.retry import retry_read
from utils.identity import IdentityContext, has_role


logger = logging.getLogger('services.things')

ADMIN_ROLE = "admin"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_PAGE = 100000

UPDATABLE_FIELDS = ("name", "description", "image_key")


def can_manage(identity: IdentityContext, thing: Thing) -> bool:
    return thing.owner_id == identity.subject or has_role(identity, ADMIN_ROLE)


@dataclass
class ThingService:
    session: Session
    read_attempts: int = 3

    def _load(self, thing_id: str) -> Optional[Thing]:
        return retry_read(
            self.session,
            lambda: self.session.get(Thing, thing_id, populate_existing=True),
            what="thing",
            attempts=self.read_attempts,
        )

    def _load_managed(self, identity: IdentityContext, thing_id: str) -> Thing:
        thing = self._load(thing_id)
        if thing is None:
            raise NotFound(f"Thing {thing_id} not found")
        if not can_manage(identity, thing):
            logger.info("thing_forbidden thing_id=%s subject=%s", thing_id, identity.subject)
            raise Forbidden()
        return thing

    def create(
        self,
        identity: IdentityContext,
        name: str,
        description: Optional[str] = None,
        image_key: Optional[str] = None,
    ) -> Thing:
        thing = Thing(owner_id=identity.subject, name=name, description=description, image_key=image_key)
        self.session.add(thing)
        self.session.commit()
        logger.info("thing_created thing_id=%s owner=%s", thing.id, thing.owner_id)
        return thing

    def get(self, identity: IdentityContext, thing_id: str) -> Thing:
        return self._load_managed(identity, thing_id)

    def list(self, identity: IdentityContext, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Tuple[List[Thing], int]:
        """One page of visible Things (newest first) plus the visible total."""
        if not 1 <= page <= MAX_PAGE or not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidRequest(
                "Invalid page window",
                details={"field": "limit" if 1 <= page <= MAX_PAGE else "page"},
            )

        stmt = select(Thing)
        count = select(func.count()).select_from(Thing)
        if not has_role(identity, ADMIN_ROLE):
            stmt = stmt.where(Thing.owner_id == identity.subject)
            count = count.where(Thing.owner_id == identity.subject)
        stmt = stmt.order_by(Thing.created_at.desc(), Thing.id).offset((page - 1) * limit).limit(limit)

        def read():
            total = self.session.execute(count).scalar_one()
            items = list(self.session.execute(stmt).scalars())
            return items, total

        return retry_read(self.session, read, what="things_page", attempts=self.read_attempts)

    def update(self, identity: IdentityContext, thing_id: str, changes: Dict[str, Any]) -> Thing:
        """
        Apply a partial update. Keys absent from `changes` are left alone;
        an explicit None clears a nullable field.
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise InvalidRequest("Unknown fields", details={"field": sorted(unknown)[0]})

        thing = self._load_managed(identity, thing_id)
        if not changes:
            return thing

        result = self.session.execute(
            update(Thing)
            .where(Thing.id == thing_id, Thing.owner_id == thing.owner_id)
            .values(**changes, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Deleted or re-owned between the read and the write
            self.session.rollback()
            raise NotFound(f"Thing {thing_id} not found")
        self.session.commit()
        logger.info("thing_updated thing_id=%s fields=%s", thing_id, ",".join(sorted(changes)))

        updated = self._load(thing_id)
        if updated is None:
            raise NotFound(f"Thing {thing_id} not found")
        return updated

    def delete(self, identity: IdentityContext, thing_id: str) -> None:
        thing = self._load_managed(identity, thing_id)
        result = self.session.execute(
            delete(Thing)
            .where(Thing.id == thing_id, Thing.owner_id == thing.owner_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise NotFound(f"Thing {thing_id} not found")
        self.session.commit()
        self.session.expunge(thing)
        logger.info("thing_deleted thing_id=%s", thing_id)
