"""
Digest composition: one user, one trigger.

For every notification category the user has email-enabled, build the scored
dataset, keep the top N, and hand it to the mailer. Empty categories are
skipped. Nothing is persisted here.
"""
import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from affinity.core.config import settings as default_settings, Settings
from affinity.models import TagSource
from affinity.schemas.digest import ConnectionUpdateItem, JobOpportunityItem, PersonRecommendationItem
from affinity.services.candidate_fetcher import CandidateFetcher, normalize_update
from affinity.services.mailer import Mailer
from affinity.services.preferences import Recipient
from affinity.services.profile_aggregator import ProfileSnapshot, get_viewer_defaults
from affinity.services.scoring import (
    MATCH_FORMULA_RECIPROCAL,
    JobScorer,
    PersonScorer,
    SimilarityScorer,
    score_person_match,
)
from affinity.services.taxonomy import TaxonomyStore

logger = logging.getLogger(__name__)


class DigestCategory(str, enum.Enum):
    CONNECTION_UPDATES = "connectionUpdates"
    CONNECTION_RECOMMENDATIONS = "connectionRecommendations"
    JOB_OPPORTUNITIES = "jobOpportunities"


CATEGORY_TEMPLATES = {
    DigestCategory.CONNECTION_UPDATES: "connection-update",
    DigestCategory.CONNECTION_RECOMMENDATIONS: "connection-recommendation",
    DigestCategory.JOB_OPPORTUNITIES: "job-opportunity",
}


def rank_top(items: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
    """Highest match_percentage first, newest first on ties, truncated to limit."""
    ranked = sorted(
        items,
        key=lambda i: (i["match_percentage"], i.get("created_at") or datetime.min),
        reverse=True,
    )
    return ranked[:limit]


@dataclass
class DigestOutcome:
    user_id: str
    sent: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class DigestComposer:
    def __init__(
        self,
        db: Session,
        mailer: Optional[Mailer] = None,
        settings: Optional[Settings] = None,
        person_scorer: Optional[PersonScorer] = None,
        job_scorer: Optional[JobScorer] = None,
        similarity_scorer: Optional[SimilarityScorer] = None,
    ):
        self.db = db
        self.mailer = mailer
        self.settings = settings or default_settings
        self.fetcher = CandidateFetcher(db, self.settings)
        self.taxonomy = TaxonomyStore(db)
        self.person_scorer = person_scorer or PersonScorer()
        self.job_scorer = job_scorer or JobScorer()
        self.similarity_scorer = similarity_scorer or SimilarityScorer()

    # -- per-category datasets -------------------------------------------

    def connection_updates(self, viewer: ProfileSnapshot, since: datetime) -> List[Dict[str, Any]]:
        updates = self.fetcher.connection_updates_since(viewer.user_id, since)
        items = []
        for update in updates:
            similarity = self.similarity_scorer.evaluate(
                viewer, update, sources=(TagSource.ATTRIBUTE, TagSource.INTEREST)
            )
            item = ConnectionUpdateItem(
                **normalize_update(update, self.settings.BASE_URL),
                match_percentage=similarity.percentage,
            )
            items.append(item.model_dump())
        return items

    def connection_recommendations(
        self,
        viewer: ProfileSnapshot,
        since: Optional[datetime] = None,
        bidirectional: bool = True,
        formula: str = MATCH_FORMULA_RECIPROCAL,
    ) -> List[Dict[str, Any]]:
        candidates = self.fetcher.recommendable_users(viewer.user_id)
        items = []
        for candidate in candidates:
            item = PersonRecommendationItem(
                user_id=candidate.user_id,
                name=candidate.name,
                categories=self.taxonomy.names(candidate.category_ids),
                subcategories=self.taxonomy.names(candidate.subcategory_ids),
                goals=self.taxonomy.names(candidate.goal_ids),
                location=", ".join(p for p in (candidate.city, candidate.country) if p),
                link=f"{self.settings.BASE_URL}/profile/{candidate.user_id}",
                match_percentage=score_person_match(
                    viewer, candidate, bidirectional, formula, scorer=self.person_scorer
                ),
            )
            items.append(item.model_dump())
        return items

    def job_opportunities(self, viewer: ProfileSnapshot, since: datetime) -> List[Dict[str, Any]]:
        jobs = self.fetcher.recent_jobs_excluding_self(viewer.user_id, since)
        items = []
        for job in jobs:
            item = JobOpportunityItem(
                job_id=job.id,
                title=job.title,
                company=job.company_name,
                location=job.location,
                description=job.description,
                author=job.owner_name,
                created_at=job.created_at,
                link=job.link(self.settings.BASE_URL),
                match_percentage=self.job_scorer.score(viewer, job),
            )
            items.append(item.model_dump())
        return items

    def _builder(
        self, category: DigestCategory, recipient: Recipient
    ) -> Callable[[ProfileSnapshot, datetime], List[Dict[str, Any]]]:
        return {
            DigestCategory.CONNECTION_UPDATES: self.connection_updates,
            DigestCategory.CONNECTION_RECOMMENDATIONS: partial(
                self.connection_recommendations,
                bidirectional=recipient.bidirectional_match,
                formula=recipient.match_formula,
            ),
            DigestCategory.JOB_OPPORTUNITIES: self.job_opportunities,
        }[category]

    # -- composition -----------------------------------------------------

    def compose(self, recipient: Recipient, since: datetime) -> Dict[str, List[Dict[str, Any]]]:
        """
        Ranked, truncated datasets for every enabled category of one user.
        Categories that are disabled or come back empty are left out.
        """
        viewer = get_viewer_defaults(self.db, recipient.user_id)
        if viewer.is_empty:
            logger.info("User %s no longer exists, nothing to compose", recipient.user_id)
            return {}

        digest: Dict[str, List[Dict[str, Any]]] = {}
        for category in DigestCategory:
            if not recipient.wants(category.value):
                continue
            ranked = rank_top(self._builder(category, recipient)(viewer, since), self.settings.DIGEST_TOP_N)
            if ranked:
                digest[category.value] = ranked
        return digest

    def deliver(
        self,
        recipient: Recipient,
        cadence: str,
        since: datetime,
        cancelled: Optional[threading.Event] = None,
    ) -> DigestOutcome:
        """
        Compose and dispatch. Composition errors propagate; mailer errors are per category.

        Once `cancelled` is set no further category is handed to the mailer; the
        remaining ones are reported as skipped.
        """
        if self.mailer is None:
            raise RuntimeError("DigestComposer.deliver requires a mailer")

        outcome = DigestOutcome(user_id=recipient.user_id)
        digest = self.compose(recipient, since)

        for category in DigestCategory:
            if cancelled is not None and cancelled.is_set():
                logger.warning(f"Digest for user={recipient.user_id} cancelled before {category.value}")
                outcome.skipped.append(category.value)
                continue
            items = digest.get(category.value)
            if not items:
                outcome.skipped.append(category.value)
                continue
            try:
                ok = self.mailer.send(
                    recipient,
                    category.value,
                    items,
                    CATEGORY_TEMPLATES[category],
                    cadence,
                )
            except Exception:
                logger.exception(f"Mailer raised for user={recipient.user_id} category={category.value}")
                ok = False

            if ok:
                outcome.sent.append(category.value)
                logger.info(
                    "digest_sent",
                    extra={
                        "user_id": recipient.user_id,
                        "category": category.value,
                        "cadence": cadence,
                        "count": len(items),
                    },
                )
            else:
                outcome.failed.append(category.value)
        return outcome
