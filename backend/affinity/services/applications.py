"""Rank a user's own job applications and event registrations by profile fit."""
import logging
from typing import List

from sqlalchemy.orm import Session

from affinity.models import ContentType, EventRegistration, JobApplication
from affinity.schemas.digest import MatchedTagOut, RankedApplication, SimilarityBreakdown
from affinity.services.content_store import ContentStore
from affinity.services.profile_aggregator import get_viewer_defaults
from affinity.services.scoring import ScoreResult, SimilarityScorer

logger = logging.getLogger(__name__)


def to_breakdown(result: ScoreResult) -> SimilarityBreakdown:
    return SimilarityBreakdown(
        score=result.score,
        max_score=result.max_score,
        percentage=result.percentage,
        matched_factor_count=result.matched_factor_count,
        matches={
            bucket: [MatchedTagOut(id=m.id, name=m.name) for m in tags]
            for bucket, tags in result.matches.items()
        },
    )


def _rank(db: Session, user_id: str, records, content_attr: str, content_type: ContentType) -> List[RankedApplication]:
    viewer = get_viewer_defaults(db, user_id)
    content = ContentStore(db).get_many([getattr(r, content_attr) for r in records])
    scorer = SimilarityScorer()

    ranked: List[RankedApplication] = []
    for record in records:
        snapshot = content.get(str(getattr(record, content_attr)))
        if snapshot is None:
            logger.warning(f"{content_type.value} {getattr(record, content_attr)} missing for record {record.id}")
            continue
        result = scorer.evaluate(viewer, snapshot, content_type.value)
        ranked.append(
            RankedApplication(
                record_id=str(record.id),
                content_id=snapshot.id,
                content_type=content_type.value,
                title=snapshot.title,
                created_at=record.created_at,
                similarity=to_breakdown(result),
            )
        )

    ranked.sort(key=lambda r: r.similarity.percentage, reverse=True)
    return ranked


def rank_job_applications(db: Session, user_id: str) -> List[RankedApplication]:
    records = (
        db.query(JobApplication)
        .filter(JobApplication.user_id == str(user_id))
        .order_by(JobApplication.created_at.desc())
        .all()
    )
    return _rank(db, user_id, records, "job_id", ContentType.JOB)


def rank_event_registrations(db: Session, user_id: str) -> List[RankedApplication]:
    records = (
        db.query(EventRegistration)
        .filter(EventRegistration.user_id == str(user_id))
        .order_by(EventRegistration.created_at.desc())
        .all()
    )
    return _rank(db, user_id, records, "event_id", ContentType.EVENT)
