"""Taxonomy/identity lookups: resolve term ids to display names."""
import logging
from typing import Collection, Dict, List

from sqlalchemy.orm import Session

from affinity.models import TaxonomyTerm

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"


class TaxonomyStore:
    def __init__(self, db: Session):
        self.db = db
        self._cache: Dict[str, str] = {}

    def resolve_names(self, term_ids: Collection[str]) -> Dict[str, str]:
        """Map each id to its display name; unknown ids map to "Unknown"."""
        ids = {str(t) for t in term_ids if t is not None}
        missing = [i for i in ids if i not in self._cache]
        if missing:
            rows = self.db.query(TaxonomyTerm.id, TaxonomyTerm.name).filter(TaxonomyTerm.id.in_(missing)).all()
            for term_id, name in rows:
                self._cache[str(term_id)] = name
        return {i: self._cache.get(i, UNKNOWN_NAME) for i in ids}

    def names(self, term_ids: Collection[str]) -> List[str]:
        """Sorted display names for known ids, skipping unknown ones."""
        resolved = self.resolve_names(term_ids)
        return sorted(name for name in resolved.values() if name != UNKNOWN_NAME)
