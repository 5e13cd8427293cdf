"""
Profile snapshots ("viewer defaults") used by every scorer.

A snapshot is an immutable view of one user's declared taxonomy tags, split by
source (attribute vs interest), plus location. Missing users produce an empty
snapshot so scoring degrades to floor values instead of failing.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional, Iterable

from sqlalchemy.orm import Session, selectinload

from affinity.models import User, UserTaxonomy, TaxonomyAxis, TagSource

logger = logging.getLogger(__name__)

EMPTY: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class ProfileSnapshot:
    user_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    # axis value -> ids, per tag source
    attributes: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    interests: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    # term id -> display name for every tag above
    term_names: Mapping[str, str] = field(default_factory=dict)

    def attribute_ids(self, axis: TaxonomyAxis) -> FrozenSet[str]:
        return self.attributes.get(axis.value, EMPTY)

    def interest_ids(self, axis: TaxonomyAxis) -> FrozenSet[str]:
        return self.interests.get(axis.value, EMPTY)

    @property
    def category_ids(self) -> FrozenSet[str]:
        return self.attribute_ids(TaxonomyAxis.CATEGORY)

    @property
    def subcategory_ids(self) -> FrozenSet[str]:
        return self.attribute_ids(TaxonomyAxis.SUBCATEGORY)

    @property
    def goal_ids(self) -> FrozenSet[str]:
        return self.attribute_ids(TaxonomyAxis.GOAL)

    @property
    def is_empty(self) -> bool:
        return self.user_id is None


def snapshot_from_links(
    user_id: Optional[str],
    links: Iterable[UserTaxonomy],
    name: Optional[str] = None,
    email: Optional[str] = None,
    country: Optional[str] = None,
    city: Optional[str] = None,
) -> ProfileSnapshot:
    attributes: Dict[str, set] = {}
    interests: Dict[str, set] = {}
    term_names: Dict[str, str] = {}

    for link in links:
        term = link.term
        if term is None or term.id is None:
            continue
        term_id = str(term.id)
        bucket = interests if link.source == TagSource.INTEREST.value else attributes
        bucket.setdefault(term.axis, set()).add(term_id)
        term_names[term_id] = term.name

    return ProfileSnapshot(
        user_id=str(user_id) if user_id is not None else None,
        name=name,
        email=email,
        country=country or None,
        city=city or None,
        attributes={axis: frozenset(ids) for axis, ids in attributes.items()},
        interests={axis: frozenset(ids) for axis, ids in interests.items()},
        term_names=term_names,
    )


def snapshot_from_user(user: User) -> ProfileSnapshot:
    """Build a snapshot from a User whose taxonomy links are already loaded."""
    return snapshot_from_links(
        user.id,
        user.taxonomy_links or [],
        name=user.name,
        email=user.email,
        country=user.country,
        city=user.city,
    )


def get_viewer_defaults(db: Session, user_id: str) -> ProfileSnapshot:
    """
    Load the viewer snapshot for user_id.

    Returns an empty ProfileSnapshot (no error) when the user does not exist.
    """
    user = (
        db.query(User)
        .options(selectinload(User.taxonomy_links).selectinload(UserTaxonomy.term))
        .filter(User.id == str(user_id))
        .first()
    )
    if user is None:
        logger.debug("Viewer %s not found, using empty snapshot", user_id)
        return ProfileSnapshot()
    return snapshot_from_user(user)
