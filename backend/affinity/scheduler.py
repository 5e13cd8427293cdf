"""
Digest scheduler.

Three cron triggers (daily, weekly, monthly) each run one digest batch: select
the cohort for that cadence, then compose and send every user's digest on a
bounded worker pool. A failure or timeout for one user is logged and counted;
the batch always carries on with the next user.

Uses APScheduler to run the triggers in the background.
"""
import calendar
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from affinity.core.config import settings as default_settings, Settings
from affinity.database import SessionLocal
from affinity.models import EmailFrequency
from affinity.services.digest import DigestComposer, DigestOutcome
from affinity.services.mailer import Mailer, ResendMailer
from affinity.services.preferences import (
    NotificationPreferenceStore,
    Recipient,
    TRIGGER_CADENCES,
    trigger_cadence,
)

logger = logging.getLogger(__name__)


def lookback_start(cadence: EmailFrequency, now: datetime) -> datetime:
    """Start of the lookback window: one day, seven days, or one calendar month."""
    if cadence == EmailFrequency.WEEKLY:
        return now - timedelta(days=7)
    if cadence == EmailFrequency.MONTHLY:
        year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
        day = min(now.day, calendar.monthrange(year, month)[1])
        return now.replace(year=year, month=month, day=day)
    return now - timedelta(days=1)


@dataclass
class DigestRunSummary:
    cadence: str
    since: datetime
    users: int = 0
    digests_sent: int = 0
    failures: int = 0
    timed_out: int = 0
    elapsed_ms: float = 0.0


@dataclass
class _PooledUser:
    recipient: Recipient
    cancelled: threading.Event = field(default_factory=threading.Event)
    started_at: Optional[float] = None


def _run_pooled(
    cohort: List[Recipient],
    compose_one: Callable[..., DigestOutcome],
    record: Callable[[DigestOutcome], None],
    summary: DigestRunSummary,
    settings: Settings,
    trigger: EmailFrequency,
) -> None:
    """
    Run users on a bounded pool. Each user's clock starts when a worker picks it
    up, not when the batch starts waiting on it. A user past its deadline is
    flagged cancelled, so it sends nothing more, and counted as timed out.
    """
    timeout = settings.DIGEST_USER_TIMEOUT_SECONDS

    def run(user: _PooledUser) -> DigestOutcome:
        user.started_at = time.monotonic()
        return compose_one(user.recipient, user.cancelled)

    executor = ThreadPoolExecutor(
        max_workers=settings.DIGEST_MAX_WORKERS,
        thread_name_prefix=f"digest-{trigger.value}",
    )
    try:
        users: Dict[Future, _PooledUser] = {}
        for recipient in cohort:
            user = _PooledUser(recipient)
            users[executor.submit(run, user)] = user
        pending = set(users)

        while pending:
            deadlines = [users[f].started_at + timeout for f in pending if users[f].started_at is not None]
            wait_for = max(0.0, min(deadlines) - time.monotonic()) if deadlines else timeout
            done, _ = wait(pending, timeout=wait_for, return_when=FIRST_COMPLETED)

            for future in done:
                pending.discard(future)
                try:
                    record(future.result())
                except Exception:
                    summary.failures += 1
                    logger.exception(f"Digest composition failed for user {users[future].recipient.user_id}")

            clock = time.monotonic()
            for future in list(pending):
                user = users[future]
                if user.started_at is None or future.done() or clock - user.started_at < timeout:
                    continue
                user.cancelled.set()
                pending.discard(future)
                summary.failures += 1
                summary.timed_out += 1
                logger.error(
                    f"Digest composition for user {user.recipient.user_id} exceeded "
                    f"{timeout}s, skipping"
                )
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def run_digest_batch(
    cadence: Any,
    mailer: Optional[Mailer] = None,
    session_factory: Callable = SessionLocal,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    composer_factory: Callable[..., DigestComposer] = DigestComposer,
) -> DigestRunSummary:
    """
    Run one digest batch for a trigger cadence.

    Each user is composed in its own session. With DIGEST_MAX_WORKERS == 1 users
    run inline, one after another; otherwise on a thread pool where a user still
    running DIGEST_USER_TIMEOUT_SECONDS after its worker started it is cancelled
    and counted as timed out.
    """
    settings = settings or default_settings
    trigger = trigger_cadence(cadence)
    now = now or datetime.utcnow()
    since = lookback_start(trigger, now)
    mailer = mailer or ResendMailer(settings)
    summary = DigestRunSummary(cadence=trigger.value, since=since)
    started = time.perf_counter()

    logger.info(f"Sending {trigger.value} notification emails (since {since.isoformat()})")

    db = session_factory()
    try:
        cohort: List[Recipient] = NotificationPreferenceStore(db).cohort_for(trigger)
    except Exception:
        logger.exception(f"Could not load the {trigger.value} cohort")
        return summary
    finally:
        db.close()

    summary.users = len(cohort)

    def compose_one(recipient: Recipient, cancelled: Optional[threading.Event] = None) -> DigestOutcome:
        session = session_factory()
        try:
            composer = composer_factory(session, mailer, settings)
            return composer.deliver(recipient, trigger.value, since, cancelled=cancelled)
        finally:
            session.close()

    def record(outcome: DigestOutcome) -> None:
        summary.digests_sent += len(outcome.sent)
        if outcome.failed:
            summary.failures += 1

    if settings.DIGEST_MAX_WORKERS <= 1:
        for recipient in cohort:
            try:
                record(compose_one(recipient))
            except Exception:
                summary.failures += 1
                logger.exception(f"Digest composition failed for user {recipient.user_id}")
    else:
        _run_pooled(cohort, compose_one, record, summary, settings, trigger)

    summary.elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"Finished sending {trigger.value} notification emails: users={summary.users} "
        f"sent={summary.digests_sent} failures={summary.failures} elapsed={summary.elapsed_ms:.2f}ms"
    )
    return summary


class DigestScheduler:
    """
    Owns the background scheduler and its three cron jobs.

    Construct once at process start; start()/stop() from the app lifecycle and
    run_now() from admin tooling or tests.
    """

    def __init__(
        self,
        mailer: Optional[Mailer] = None,
        session_factory: Callable = SessionLocal,
        settings: Optional[Settings] = None,
        batch_runner: Callable[..., DigestRunSummary] = run_digest_batch,
    ):
        self.settings = settings or default_settings
        self.mailer = mailer or ResendMailer(self.settings)
        self.session_factory = session_factory
        self.batch_runner = batch_runner
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def triggers(self) -> Dict[str, CronTrigger]:
        tz = self.settings.SCHEDULER_TIMEZONE
        hour, minute = self.settings.DIGEST_HOUR_UTC, self.settings.DIGEST_MINUTE_UTC
        return {
            # Every day at 06:00
            EmailFrequency.DAILY.value: CronTrigger(hour=hour, minute=minute, timezone=tz),
            # Every Monday at 06:00
            EmailFrequency.WEEKLY.value: CronTrigger(day_of_week="mon", hour=hour, minute=minute, timezone=tz),
            # First day of the month at 06:00
            EmailFrequency.MONTHLY.value: CronTrigger(day=1, hour=hour, minute=minute, timezone=tz),
        }

    def start(self) -> None:
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting digest scheduler")
        scheduler = BackgroundScheduler(timezone=self.settings.SCHEDULER_TIMEZONE)
        for cadence, trigger in self.triggers().items():
            scheduler.add_job(
                self._run_scheduled,
                trigger=trigger,
                args=[cadence],
                id=f"{cadence}_notification_digest",
                name=f"Send {cadence} notification digests",
                replace_existing=True,
            )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Digest scheduler started with daily, weekly and monthly jobs")

    def stop(self, wait: bool = False) -> None:
        if self._scheduler is not None:
            logger.info("Stopping digest scheduler")
            if self._scheduler.running:
                self._scheduler.shutdown(wait=wait)
            self._scheduler = None

    def job_ids(self) -> List[str]:
        if self._scheduler is None:
            return []
        return sorted(job.id for job in self._scheduler.get_jobs())

    def run_now(self, cadence: Any = None, now: Optional[datetime] = None) -> List[DigestRunSummary]:
        """
        Run a batch immediately, outside the timer. With no cadence, runs all
        three triggers in turn.
        """
        cadences = [trigger_cadence(cadence)] if cadence is not None else list(TRIGGER_CADENCES)
        logger.info(f"Running notification digests now: {[c.value for c in cadences]}")
        return [self._run(c, now=now) for c in cadences]

    def _run(self, cadence: EmailFrequency, now: Optional[datetime] = None) -> DigestRunSummary:
        return self.batch_runner(
            cadence,
            mailer=self.mailer,
            session_factory=self.session_factory,
            settings=self.settings,
            now=now,
        )

    def _run_scheduled(self, cadence: str) -> None:
        """Scheduled job entry point. Never lets an exception reach APScheduler."""
        try:
            summary = self._run(trigger_cadence(cadence))
            logger.info(f"{cadence} digest job completed: {summary}")
        except Exception as e:
            logger.exception(f"{cadence} digest job failed: {e}")
