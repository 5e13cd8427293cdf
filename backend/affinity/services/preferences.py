"""
Notification preference store.

Reads UserSettings and answers two questions: which cadence a user wants, and
whether a notification category is email-enabled. Every read fails open: a
missing row, malformed JSON or an unknown value falls back to the documented
defaults (cadence "daily", every category enabled) so corrupt data never
silently suppresses all notifications.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from affinity.models import EmailFrequency, User, UserSettings
from affinity.services.scoring import MATCH_FORMULA_RECIPROCAL, MATCH_FORMULA_SIMPLE

logger = logging.getLogger(__name__)

DEFAULT_CADENCE = EmailFrequency.DAILY

# Every category defaults to email-enabled
DEFAULT_NOTIFICATIONS: Dict[str, Dict[str, bool]] = {
    "jobOpportunities": {"email": True},
    "connectionInvitations": {"email": True},
    "connectionRecommendations": {"email": True},
    "connectionUpdates": {"email": True},
    "messages": {"email": True},
    "meetingRequests": {"email": True},
}

TRIGGER_CADENCES = (EmailFrequency.DAILY, EmailFrequency.WEEKLY, EmailFrequency.MONTHLY)


class UnknownCadenceError(ValueError):
    """Raised when a trigger name is not one of daily / weekly / monthly."""
    pass


def normalize_cadence(value: Any) -> EmailFrequency:
    """
    Normalize a stored email frequency to EmailFrequency.

    Accepts enum objects, values ("weekly") or names ("WEEKLY"). None or unknown
    values default to daily.
    """
    if value is None:
        return DEFAULT_CADENCE

    if isinstance(value, EmailFrequency):
        return value

    if isinstance(value, str):
        value_lower = value.strip().lower()
        for cadence in EmailFrequency:
            if cadence.value == value_lower:
                return cadence

    logger.warning(f"Could not normalize email_frequency={value!r}, defaulting to {DEFAULT_CADENCE.value}")
    return DEFAULT_CADENCE


def trigger_cadence(value: Any) -> EmailFrequency:
    """Validate a scheduler trigger name. "auto" is a user preference, not a trigger."""
    try:
        cadence = EmailFrequency(str(getattr(value, "value", value)).strip().lower())
    except ValueError:
        raise UnknownCadenceError(f"Unknown digest cadence: {value!r}")
    if cadence not in TRIGGER_CADENCES:
        raise UnknownCadenceError(f"Unknown digest cadence: {value!r}")
    return cadence


def parse_notifications(raw: Any) -> Dict[str, Dict[str, Any]]:
    """
    Parse the stored notifications map, merged over DEFAULT_NOTIFICATIONS.

    Accepts a dict or a JSON string. Malformed JSON or non-object values return
    the defaults. Malformed per-category entries keep that category's default.
    """
    merged = {name: dict(flags) for name, flags in DEFAULT_NOTIFICATIONS.items()}
    if raw is None:
        return merged

    data = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.warning("Malformed notifications JSON, falling back to defaults")
            return merged

    if not isinstance(data, dict):
        logger.warning(f"Notifications value is {type(data).__name__}, not an object; falling back to defaults")
        return merged

    for name, flags in data.items():
        if isinstance(flags, dict):
            merged.setdefault(name, {}).update(flags)
        else:
            logger.warning(f"Ignoring malformed notification entry {name!r}={flags!r}")
    return merged


def category_enabled(notifications: Dict[str, Dict[str, Any]], category: str) -> bool:
    """Only an explicit email=false disables a category."""
    flags = notifications.get(category)
    if not isinstance(flags, dict):
        return True
    return flags.get("email", True) is not False


def normalize_match_formula(value: Any) -> str:
    """Stored bidirectional formula; anything but "simple" means reciprocal."""
    if isinstance(value, str) and value.strip().lower() == MATCH_FORMULA_SIMPLE:
        return MATCH_FORMULA_SIMPLE
    return MATCH_FORMULA_RECIPROCAL


@dataclass(frozen=True)
class Recipient:
    user_id: str
    name: Optional[str]
    email: str
    cadence: EmailFrequency
    notifications: Dict[str, Dict[str, Any]]
    bidirectional_match: bool = True
    match_formula: str = MATCH_FORMULA_RECIPROCAL

    def wants(self, category: str) -> bool:
        return category_enabled(self.notifications, category)


def recipient_from(user: User, row: Optional[UserSettings]) -> Recipient:
    """Build a Recipient; a missing settings row means every default."""
    bidirectional = True
    if row is not None and row.bidirectional_match is not None:
        bidirectional = bool(row.bidirectional_match)
    return Recipient(
        user_id=str(user.id),
        name=user.name,
        email=user.email,
        cadence=normalize_cadence(row.email_frequency if row else None),
        notifications=parse_notifications(row.notifications if row else None),
        bidirectional_match=bidirectional,
        match_formula=normalize_match_formula(row.bidirectional_match_formula if row else None),
    )


class NotificationPreferenceStore:
    def __init__(self, db: Session):
        self.db = db

    def _settings(self, user_id: str) -> Optional[UserSettings]:
        return self.db.query(UserSettings).filter(UserSettings.user_id == str(user_id)).first()

    def get_cadence(self, user_id: str) -> EmailFrequency:
        row = self._settings(user_id)
        return normalize_cadence(row.email_frequency if row else None)

    def get_notifications(self, user_id: str) -> Dict[str, Dict[str, Any]]:
        row = self._settings(user_id)
        return parse_notifications(row.notifications if row else None)

    def is_category_enabled(self, user_id: str, category: str) -> bool:
        return category_enabled(self.get_notifications(user_id), category)

    def get_recipient(self, user_id: str) -> Optional[Recipient]:
        user = self.db.query(User).filter(User.id == str(user_id)).first()
        if user is None or not user.email:
            return None
        return recipient_from(user, user.settings)

    def cohort_for(self, trigger: Any) -> List[Recipient]:
        """
        Verified users with an email whose cadence equals the trigger or is "auto".

        Users without a settings row count as daily. The cadence match runs in SQL
        on the trimmed, lowercased column so only the trigger's users are loaded.
        """
        cadence = trigger_cadence(trigger)
        stored = func.lower(func.trim(UserSettings.email_frequency))
        wanted = [cadence.value, EmailFrequency.AUTO.value]

        cadence_filter = stored.in_(wanted)
        if cadence == DEFAULT_CADENCE:
            # Missing rows and unrecognized values read as daily
            known = [c.value for c in EmailFrequency]
            cadence_filter = or_(
                UserSettings.id.is_(None),
                UserSettings.email_frequency.is_(None),
                cadence_filter,
                stored.notin_(known),
            )

        rows = (
            self.db.query(User, UserSettings)
            .outerjoin(UserSettings, UserSettings.user_id == User.id)
            .filter(User.is_verified.is_(True), User.email.isnot(None), User.email != "")
            .filter(cadence_filter)
            .order_by(User.created_at, User.id)
            .all()
        )
        return [recipient_from(user, row) for user, row in rows]
