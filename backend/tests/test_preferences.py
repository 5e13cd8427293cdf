"""Tests for notification preference parsing and cohort selection."""
import json

import pytest
from sqlalchemy.orm import Session

from affinity.models import EmailFrequency, User
from affinity.services.preferences import (
    DEFAULT_NOTIFICATIONS,
    NotificationPreferenceStore,
    UnknownCadenceError,
    category_enabled,
    normalize_cadence,
    normalize_match_formula,
    parse_notifications,
    trigger_cadence,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, EmailFrequency.DAILY),
        ("weekly", EmailFrequency.WEEKLY),
        ("MONTHLY", EmailFrequency.MONTHLY),
        (" auto ", EmailFrequency.AUTO),
        (EmailFrequency.WEEKLY, EmailFrequency.WEEKLY),
        ("hourly", EmailFrequency.DAILY),
        (42, EmailFrequency.DAILY),
    ],
)
def test_normalize_cadence(raw, expected):
    assert normalize_cadence(raw) == expected


def test_trigger_cadence_rejects_auto_and_unknown():
    assert trigger_cadence("Weekly") == EmailFrequency.WEEKLY
    with pytest.raises(UnknownCadenceError):
        trigger_cadence("auto")
    with pytest.raises(UnknownCadenceError):
        trigger_cadence("yearly")


def test_parse_notifications_fails_open_on_malformed_json():
    assert parse_notifications("{not json") == DEFAULT_NOTIFICATIONS
    assert parse_notifications("[1, 2]") == DEFAULT_NOTIFICATIONS
    assert parse_notifications(None) == DEFAULT_NOTIFICATIONS


def test_parse_notifications_merges_over_defaults():
    raw = json.dumps({"jobOpportunities": {"email": False}, "messages": "garbage"})
    parsed = parse_notifications(raw)

    assert parsed["jobOpportunities"] == {"email": False}
    assert parsed["messages"] == {"email": True}
    assert parsed["connectionUpdates"] == {"email": True}


def test_category_enabled_only_explicit_false_disables():
    assert category_enabled({}, "connectionUpdates")
    assert category_enabled({"connectionUpdates": {}}, "connectionUpdates")
    assert category_enabled({"connectionUpdates": {"email": None}}, "connectionUpdates")
    assert not category_enabled({"connectionUpdates": {"email": False}}, "connectionUpdates")


def test_store_reads_with_defaults(db: Session, make_user):
    """Users without a settings row get daily and every category enabled."""
    bare = make_user(name="Bare")
    tuned = make_user(
        name="Tuned",
        email_frequency="weekly",
        notifications='{"connectionRecommendations": {"email": false}}',
    )
    store = NotificationPreferenceStore(db)

    assert store.get_cadence(bare.id) == EmailFrequency.DAILY
    assert store.is_category_enabled(bare.id, "connectionRecommendations")

    assert store.get_cadence(tuned.id) == EmailFrequency.WEEKLY
    assert not store.is_category_enabled(tuned.id, "connectionRecommendations")
    assert store.is_category_enabled(tuned.id, "jobOpportunities")


def test_get_recipient_requires_existing_user_with_email(db: Session, make_user):
    store = NotificationPreferenceStore(db)
    no_email = make_user(name="No email", email=None)

    assert store.get_recipient("missing") is None
    assert store.get_recipient(no_email.id) is None


def test_cohort_membership_by_trigger(db: Session, make_user):
    daily = make_user(name="Daily", email_frequency="daily")
    weekly = make_user(name="Weekly", email_frequency="weekly")
    monthly = make_user(name="Monthly", email_frequency="monthly")
    auto = make_user(name="Auto", email_frequency="auto")
    no_row = make_user(name="No settings")
    make_user(name="Unverified", is_verified=False, email_frequency="daily")
    make_user(name="No email", email=None, email_frequency="daily")

    store = NotificationPreferenceStore(db)

    def cohort(trigger):
        return {r.user_id for r in store.cohort_for(trigger)}

    assert cohort("daily") == {daily.id, auto.id, no_row.id}
    assert cohort("weekly") == {weekly.id, auto.id}
    assert cohort(EmailFrequency.MONTHLY) == {monthly.id, auto.id}


def test_cohort_rejects_unknown_trigger(db: Session):
    with pytest.raises(UnknownCadenceError):
        NotificationPreferenceStore(db).cohort_for("fortnightly")


def test_cohort_matches_stored_cadence_case_and_whitespace(db: Session, make_user):
    shouting = make_user(name="Shouting", email_frequency="WEEKLY")
    padded = make_user(name="Padded", email_frequency=" auto ")
    garbage = make_user(name="Garbage", email_frequency="hourly")

    store = NotificationPreferenceStore(db)

    assert {r.user_id for r in store.cohort_for("weekly")} == {shouting.id, padded.id}
    # Unknown values read as daily
    assert {r.user_id for r in store.cohort_for("daily")} == {padded.id, garbage.id}


def test_cohort_only_loads_the_triggers_users(session_factory, make_user):
    """Cadence filtering happens in the query, not after loading every user."""
    for i in range(3):
        make_user(name=f"Daily {i}", email_frequency="daily")
    weekly = make_user(name="Weekly", email_frequency="weekly")

    fresh = session_factory()
    try:
        cohort = NotificationPreferenceStore(fresh).cohort_for("weekly")
        loaded_users = {obj.id for obj in fresh.identity_map.values() if isinstance(obj, User)}
    finally:
        fresh.close()

    assert [r.user_id for r in cohort] == [weekly.id]
    assert loaded_users == {weekly.id}


@pytest.mark.parametrize(
    "raw,expected",
    [(None, "reciprocal"), ("simple", "simple"), (" SIMPLE ", "simple"), ("reciprocal", "reciprocal"), ("other", "reciprocal")],
)
def test_normalize_match_formula(raw, expected):
    assert normalize_match_formula(raw) == expected


def test_recipient_carries_match_preferences(db: Session, make_user):
    store = NotificationPreferenceStore(db)
    bare = make_user(name="Bare")
    simple = make_user(name="Simple", match_formula="simple")
    one_way = make_user(name="One way", bidirectional_match=False)

    defaults = store.get_recipient(bare.id)
    assert defaults.bidirectional_match is True
    assert defaults.match_formula == "reciprocal"

    assert store.get_recipient(simple.id).match_formula == "simple"
    assert store.get_recipient(one_way.id).bidirectional_match is False

    cohort = {r.user_id: r for r in store.cohort_for("daily")}
    assert cohort[simple.id].match_formula == "simple"
    assert cohort[one_way.id].bidirectional_match is False
