"""
Read-only access to user-authored content.

Rows are converted to ContentSnapshot objects with their taxonomy tags (ids and
display names) eagerly attached, so scoring never touches the session.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Collection, Dict, FrozenSet, List, Mapping, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from affinity.models import ContentItem, ContentType, ModerationStatus, TaxonomyAxis

logger = logging.getLogger(__name__)

EMPTY: FrozenSet[str] = frozenset()

# Display label shown in digests for each content type
CONTENT_TYPE_LABELS = {
    ContentType.JOB.value: "job",
    ContentType.EVENT.value: "event",
    ContentType.SERVICE.value: "service",
    ContentType.PRODUCT.value: "product",
    ContentType.TOURISM.value: "tourism Activity",
    ContentType.FUNDING.value: "funding investment",
    ContentType.MOMENT.value: "experience",
    ContentType.NEED.value: "interest / question",
}

# Public URL path segment for each content type
CONTENT_TYPE_PATHS = {
    ContentType.JOB.value: "jobs",
    ContentType.EVENT.value: "event",
    ContentType.SERVICE.value: "service",
    ContentType.PRODUCT.value: "product",
    ContentType.TOURISM.value: "experience",
    ContentType.FUNDING.value: "funding",
    ContentType.MOMENT.value: "moment",
    ContentType.NEED.value: "need",
}


@dataclass(frozen=True)
class ContentSnapshot:
    id: str
    content_type: str
    owner_id: str
    title: str
    owner_name: Optional[str] = None
    description: Optional[str] = None
    company_name: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    created_at: Optional[datetime] = None
    tags: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    tag_names: Mapping[str, str] = field(default_factory=dict)

    def tag_ids(self, axis: TaxonomyAxis) -> FrozenSet[str]:
        return self.tags.get(axis.value, EMPTY)

    @property
    def label(self) -> str:
        return CONTENT_TYPE_LABELS.get(self.content_type, self.content_type)

    @property
    def location(self) -> Optional[str]:
        if self.city:
            return f"{self.city}, {self.country}" if self.country else self.city
        return self.country

    def link(self, base_url: str) -> str:
        path = CONTENT_TYPE_PATHS.get(self.content_type, self.content_type)
        return f"{base_url}/{path}/{self.id}"


def snapshot_content(item: ContentItem) -> ContentSnapshot:
    tags: Dict[str, set] = {}
    tag_names: Dict[str, str] = {}
    for term in item.terms or []:
        term_id = str(term.id)
        tags.setdefault(term.axis, set()).add(term_id)
        tag_names[term_id] = term.name

    return ContentSnapshot(
        id=str(item.id),
        content_type=item.content_type,
        owner_id=str(item.owner_user_id),
        owner_name=item.owner.name if item.owner is not None else None,
        title=item.title,
        description=item.description,
        company_name=item.company_name,
        city=item.city,
        country=item.country,
        created_at=item.created_at,
        tags={axis: frozenset(ids) for axis, ids in tags.items()},
        tag_names=tag_names,
    )


class ContentStore:
    """Read-only queries over ContentItem. Never mutates the session."""

    def __init__(self, db: Session):
        self.db = db

    def _visible_query(self):
        return (
            self.db.query(ContentItem)
            .options(
                selectinload(ContentItem.terms),
                selectinload(ContentItem.owner),
            )
            .filter(
                ContentItem.moderation_status == ModerationStatus.APPROVED.value,
                # Draft funding projects are never shown
                or_(ContentItem.status.is_(None), ContentItem.status != "draft"),
            )
        )

    def find_by_authors_since(
        self,
        author_ids: Collection[str],
        since: datetime,
        content_types: Optional[Collection[str]] = None,
    ) -> List[ContentSnapshot]:
        """Content of every (or the given) type authored by author_ids, created at or after since."""
        author_ids = [str(a) for a in author_ids]
        if not author_ids:
            return []

        q = self._visible_query().filter(
            ContentItem.owner_user_id.in_(author_ids),
            ContentItem.created_at >= since,
        )
        if content_types:
            q = q.filter(ContentItem.content_type.in_([str(t) for t in content_types]))

        rows = q.order_by(ContentItem.created_at.desc()).all()
        return [snapshot_content(row) for row in rows]

    def find_recent_excluding(
        self,
        author_id: str,
        since: datetime,
        limit: int,
        content_type: str = ContentType.JOB.value,
    ) -> List[ContentSnapshot]:
        """Newest content of one type created at or after since, not authored by author_id."""
        rows = (
            self._visible_query()
            .filter(
                ContentItem.content_type == content_type,
                ContentItem.owner_user_id != str(author_id),
                ContentItem.created_at >= since,
            )
            .order_by(ContentItem.created_at.desc())
            .limit(limit)
            .all()
        )
        return [snapshot_content(row) for row in rows]

    def get_many(self, content_ids: Collection[str]) -> Dict[str, ContentSnapshot]:
        """Snapshots keyed by id, regardless of moderation state."""
        ids = [str(c) for c in content_ids]
        if not ids:
            return {}
        rows = (
            self.db.query(ContentItem)
            .options(selectinload(ContentItem.terms), selectinload(ContentItem.owner))
            .filter(ContentItem.id.in_(ids))
            .all()
        )
        return {str(row.id): snapshot_content(row) for row in rows}
