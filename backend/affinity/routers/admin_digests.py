# backend/affinity/routers/admin_digests.py

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from affinity.database import get_db
from affinity.scheduler import DigestScheduler, lookback_start
from affinity.schemas.digest import DigestPreview, DigestRunResponse, RankedApplication
from affinity.services.applications import rank_event_registrations, rank_job_applications
from affinity.services.digest import DigestComposer
from affinity.services.preferences import NotificationPreferenceStore, UnknownCadenceError, trigger_cadence

# Operator tooling; authentication is handled in front of this service
router = APIRouter(tags=["admin_digests"])


def get_digest_scheduler(request: Request) -> DigestScheduler:
    """The process-wide scheduler created at startup."""
    scheduler = getattr(request.app.state, "digest_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Digest scheduler is not initialised")
    return scheduler


@router.post("/digests/run/{cadence}", response_model=DigestRunResponse)
def run_digests(
    cadence: str,
    scheduler: DigestScheduler = Depends(get_digest_scheduler),
):
    """
    Run one digest batch immediately, outside the cron timer.
    Returns the batch summary (cohort size, digests sent, per-user failures).
    """
    try:
        summary = scheduler.run_now(cadence)[0]
    except UnknownCadenceError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return DigestRunResponse(
        cadence=summary.cadence,
        since=summary.since,
        users=summary.users,
        digests_sent=summary.digests_sent,
        failures=summary.failures,
    )


@router.get("/digests/preview/{user_id}", response_model=DigestPreview)
def preview_digest(
    user_id: str,
    cadence: str = Query("daily"),
    db: Session = Depends(get_db),
):
    """Compose a user's digest for a cadence without sending anything."""
    try:
        trigger = trigger_cadence(cadence)
    except UnknownCadenceError as e:
        raise HTTPException(status_code=400, detail=str(e))

    recipient = NotificationPreferenceStore(db).get_recipient(user_id)
    if recipient is None:
        raise HTTPException(status_code=404, detail="User not found")

    since = lookback_start(trigger, datetime.utcnow())
    categories = DigestComposer(db).compose(recipient, since)
    return DigestPreview(user_id=recipient.user_id, cadence=trigger.value, since=since, categories=categories)


@router.get("/users/{user_id}/applications", response_model=List[RankedApplication])
def ranked_applications(user_id: str, db: Session = Depends(get_db)):
    """The user's job applications, best profile fit first."""
    return rank_job_applications(db, user_id)


@router.get("/users/{user_id}/registrations", response_model=List[RankedApplication])
def ranked_registrations(user_id: str, db: Session = Depends(get_db)):
    """The user's event registrations, best profile fit first."""
    return rank_event_registrations(db, user_id)
