"""
Candidate retrieval for the digest engine.

Three read-only operations feed the scorers:

- connection_updates_since: new content authored by the user's direct connections.
- recommendable_users: verified, non-admin users the user is not connected to.
- recent_jobs_excluding_self: newest job posts authored by someone else.

Exclusions (self, connections, blocks) are computed once per user per fetcher and
reused by every operation. All ids are compared as strings.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from affinity.core.config import settings as default_settings, Settings
from affinity.models import AccountType, Connection, User, UserBlock, UserTaxonomy
from affinity.services.content_store import ContentSnapshot, ContentStore
from affinity.services.profile_aggregator import ProfileSnapshot, snapshot_from_user

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExclusionSet:
    user_id: str
    connection_ids: FrozenSet[str]
    blocked_ids: FrozenSet[str]

    @property
    def excluded_ids(self) -> FrozenSet[str]:
        return frozenset({self.user_id}) | self.connection_ids | self.blocked_ids

    def allows(self, candidate_id: Any) -> bool:
        return str(candidate_id) not in self.excluded_ids


def get_connection_ids(db: Session, user_id: str) -> FrozenSet[str]:
    """Ids of every user on the other side of a connection with user_id."""
    user_id = str(user_id)
    rows = (
        db.query(Connection.user_one_id, Connection.user_two_id)
        .filter(or_(Connection.user_one_id == user_id, Connection.user_two_id == user_id))
        .all()
    )
    other_ids = set()
    for one, two in rows:
        other = two if str(one) == user_id else one
        if other is not None and str(other) != user_id:
            other_ids.add(str(other))
    return frozenset(other_ids)


def get_blocked_ids(db: Session, user_id: str) -> FrozenSet[str]:
    """Users blocked by user_id plus users who blocked user_id."""
    user_id = str(user_id)
    i_block = db.query(UserBlock.blocked_id).filter(UserBlock.blocker_id == user_id).all()
    they_block = db.query(UserBlock.blocker_id).filter(UserBlock.blocked_id == user_id).all()
    return frozenset(str(r[0]) for r in list(i_block) + list(they_block))


def build_exclusions(db: Session, user_id: str) -> ExclusionSet:
    return ExclusionSet(
        user_id=str(user_id),
        connection_ids=get_connection_ids(db, user_id),
        blocked_ids=get_blocked_ids(db, user_id),
    )


def normalize_update(item: ContentSnapshot, base_url: str) -> Dict[str, Any]:
    """Common shape for connection updates, whatever the content type."""
    return {
        "content_id": item.id,
        "type": item.label,
        "title": item.title,
        "description": item.description,
        "author": item.owner_name,
        "created_at": item.created_at,
        "link": item.link(base_url),
    }


class CandidateFetcher:
    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.store = ContentStore(db)
        self._exclusions: Dict[str, ExclusionSet] = {}

    def exclusions_for(self, user_id: str) -> ExclusionSet:
        key = str(user_id)
        if key not in self._exclusions:
            self._exclusions[key] = build_exclusions(self.db, key)
        return self._exclusions[key]

    def connection_updates_since(self, user_id: str, since: datetime) -> List[ContentSnapshot]:
        """Content of every type authored by the user's direct connections since the cutoff."""
        connection_ids = self.exclusions_for(user_id).connection_ids
        if not connection_ids:
            return []
        return self.store.find_by_authors_since(connection_ids, since)

    def recommendable_users(self, user_id: str, limit: Optional[int] = None) -> List[ProfileSnapshot]:
        """Verified non-admin users, minus self, connections and blocked users."""
        limit = limit or self.settings.RECOMMENDABLE_USER_LIMIT
        exclusions = self.exclusions_for(user_id)

        rows = (
            self.db.query(User)
            .options(selectinload(User.taxonomy_links).selectinload(UserTaxonomy.term))
            .filter(
                User.id.notin_(list(exclusions.excluded_ids)),
                User.is_verified.is_(True),
                User.account_type != AccountType.ADMIN.value,
            )
            .order_by(User.created_at.desc(), User.id)
            .limit(limit)
            .all()
        )
        return [snapshot_from_user(u) for u in rows if exclusions.allows(u.id)]

    def recent_jobs_excluding_self(
        self,
        user_id: str,
        since: datetime,
        limit: Optional[int] = None,
    ) -> List[ContentSnapshot]:
        limit = limit or self.settings.RECENT_JOB_LIMIT
        return self.store.find_recent_excluding(str(user_id), since, limit)
