# tests/unit/test_focus_lock.py
import pytest

from motor_conversacional.errors import CollaboratorFailure
from motor_conversacional.memory.focus_lock import FocusLock, score_candidate
from motor_conversacional.models.semantic_state import ReferenceCriteria

CID = "empresa-1:5511999990000"


@pytest.fixture
def focus(store, resolver):
    return FocusLock(store, resolver)


def test_lock_forms_after_second_mention_and_counts_third(focus):
    focus.register_mention(CID, "appointment", title="Reunião", date="2026-01-16")
    assert focus.has_lock(CID, "appointment") is None

    focus.register_mention(CID, "appointment", title="Reunião", date="2026-01-16")
    locked = focus.has_lock(CID, "appointment")
    assert locked is not None
    assert locked.confidence == pytest.approx(0.7)

    focus.register_mention(CID, "appointment", title="Reunião", date="2026-01-16")
    locked = focus.has_lock(CID, "appointment")
    assert locked.mentions == 3
    assert locked.confidence == pytest.approx(0.9)


def test_matching_ignores_case_and_accents(focus):
    focus.register_mention(CID, "appointment", title="Reunião")
    target = focus.register_mention(CID, "appointment", title="REUNIAO")
    assert target.mentions == 2


def test_confidence_is_capped(focus):
    for _ in range(6):
        target = focus.register_mention(CID, "appointment", title="Reunião")
    assert target.confidence == pytest.approx(0.95)


def test_lock_expires_after_five_minutes(focus, clock):
    focus.register_mention(CID, "appointment", title="Reunião", date="2026-01-16")
    focus.register_mention(CID, "appointment", title="Reunião", date="2026-01-16")

    clock.advance(minutes=4)
    assert focus.has_lock(CID, "appointment") is not None

    clock.advance(minutes=6)
    assert focus.has_lock(CID, "appointment") is None
    assert focus.snapshot(CID) == {}


def test_mismatch_replaces_target(focus):
    focus.register_mention(CID, "appointment", title="Reunião", date="2026-01-16")
    focus.register_mention(CID, "appointment", title="Reunião", date="2026-01-16")

    target = focus.register_mention(CID, "appointment", title="Dentista")

    assert target.mentions == 1
    assert target.confidence == pytest.approx(0.5)
    assert focus.has_lock(CID, "appointment") is None


def test_absent_fields_do_not_disqualify_and_new_fields_merge(focus):
    focus.register_mention(CID, "appointment", title="Reunião", date="2026-01-16")
    target = focus.register_mention(CID, "appointment", target_id="cal-1")

    assert target.mentions == 2
    assert target.target_id == "cal-1"
    assert target.title == "Reunião"


def test_clear_removes_target(focus):
    focus.register_mention(CID, "appointment", title="Reunião")
    focus.register_mention(CID, "appointment", title="Reunião")
    focus.clear(CID, "appointment")
    assert focus.has_lock(CID, "appointment") is None


def test_score_candidate_weights(resolver):
    candidate = {
        "title": "Reunião com cliente",
        "scheduled_at": "2026-01-16T15:00:00-03:00",
        "description": "no escritório central",
    }
    # título parcial (2) + local na descrição (3) + mesmo dia (5)
    criteria = ReferenceCriteria(title="reunião", location="Escritório", date="2026-01-16")
    assert score_candidate(candidate, criteria, resolver) == 10

    # título idêntico (5) + dia vizinho (2)
    criteria = ReferenceCriteria(title="Reunião com Cliente", date="2026-01-17")
    assert score_candidate(candidate, criteria, resolver) == 7

    # local só no título (2)
    criteria = ReferenceCriteria(location="cliente")
    assert score_candidate(candidate, criteria, resolver) == 2


def test_find_matching_candidates_ranks_and_filters(store, resolver, fake_calendar, owner):
    calendar = fake_calendar([
        {"id": "a", "title": "Reunião", "scheduled_at": "2026-01-16T15:00:00-03:00"},
        {"id": "b", "title": "Reunião de equipe", "scheduled_at": "2026-01-16T09:00:00-03:00"},
        {"id": "c", "title": "Dentista", "scheduled_at": "2026-01-20T10:00:00-03:00"},
    ])
    focus = FocusLock(store, resolver, find_upcoming=calendar)

    matches = focus.find_matching_candidates(owner, ReferenceCriteria(title="Reunião", date="2026-01-16"))

    assert [m.id for m in matches] == ["a", "b"]
    assert [m.score for m in matches] == [10, 7]


def test_ties_are_broken_by_latest_schedule(store, resolver, fake_calendar, owner):
    calendar = fake_calendar([
        {"id": "cedo", "title": "Reunião", "scheduled_at": "2026-01-16T09:00:00-03:00"},
        {"id": "tarde", "title": "Reunião", "scheduled_at": "2026-01-16T15:00:00-03:00"},
    ])
    focus = FocusLock(store, resolver, find_upcoming=calendar)

    matches = focus.find_matching_candidates(owner, ReferenceCriteria(title="Reunião"))

    assert [m.id for m in matches] == ["tarde", "cedo"]


def test_calendar_failure_becomes_collaborator_failure(store, resolver, owner, mocker):
    calendar = mocker.Mock(side_effect=ConnectionError("agenda fora do ar"))
    focus = FocusLock(store, resolver, find_upcoming=calendar)

    with pytest.raises(CollaboratorFailure):
        focus.find_matching_candidates(owner, ReferenceCriteria(title="Reunião"))
    assert focus.upcoming(owner) == []


def test_without_calendar_there_are_no_candidates(focus, owner):
    assert focus.find_matching_candidates(owner, ReferenceCriteria(title="Reunião")) == []
    assert focus.upcoming(owner) == []


def test_upcoming_lists_civil_times(store, resolver, calendar, owner):
    focus = FocusLock(store, resolver, find_upcoming=calendar)
    listed = focus.upcoming(owner, limit=1)
    assert len(listed) == 1
    assert listed[0].title == "Reunião"
    assert listed[0].scheduled_at == "16/01 15:00"
