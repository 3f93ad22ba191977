# tests/unit/test_action_ledger.py
import pytest
from datetime import datetime, timedelta

import pytz

from motor_conversacional.memory.action_ledger import ActionLedger
from motor_conversacional.models.semantic_state import RecentAction

CID = "empresa-1:5511999990000"
BASE = datetime(2026, 1, 15, 15, 0, tzinfo=pytz.utc)


def make_action(action_id, action_type="expense", minutes=0, **data):
    return RecentAction(
        id=action_id,
        type=action_type,
        tenant_id="empresa-1",
        user_id="5511999990000",
        created_at=BASE + timedelta(minutes=minutes),
        data=data,
    )


@pytest.fixture
def ledger(store):
    return ActionLedger(store)


def test_record_same_id_replaces_and_moves_to_front(ledger):
    ledger.record(CID, make_action("a1", amount=50))
    ledger.record(CID, make_action("a2", amount=30))
    ledger.record(CID, make_action("a1", amount=55))

    entries = ledger.entries(CID)
    assert [a.id for a in entries] == ["a1", "a2"]
    assert entries[0].data["amount"] == 55


def test_eleventh_action_evicts_only_the_oldest(ledger):
    for i in range(11):
        ledger.record(CID, make_action(str(i), minutes=i))

    ids = [a.id for a in ledger.entries(CID)]
    assert len(ids) == 10
    assert "0" not in ids
    assert ids == [str(i) for i in range(10, 0, -1)]


def test_last_of_type_and_most_recent_any(ledger):
    assert ledger.most_recent_any(CID) is None
    ledger.record(CID, make_action("ap1", "appointment"))
    ledger.record(CID, make_action("e1", "expense"))
    ledger.record(CID, make_action("r1", "revenue"))

    assert ledger.most_recent_any(CID).id == "r1"
    assert ledger.last_of_type(CID, "appointment").id == "ap1"
    assert ledger.last_of_type(CID, "expense").id == "e1"


def test_last_touched_survives_eviction(ledger):
    ledger.record(CID, make_action("ap1", "appointment"))
    for i in range(10):
        ledger.record(CID, make_action(f"e{i}"))

    assert ledger.find(CID, "ap1") is None
    assert ledger.last_touched_appointment_id(CID) == "ap1"


def test_forget_repoints_last_touched(ledger):
    ledger.record(CID, make_action("ap1", "appointment"))
    ledger.record(CID, make_action("ap2", "appointment"))
    assert ledger.last_touched_appointment_id(CID) == "ap2"

    assert ledger.forget(CID, "ap2") is True
    assert ledger.last_touched_appointment_id(CID) == "ap1"

    assert ledger.forget(CID, "ap1") is True
    assert ledger.last_touched_appointment_id(CID) is None
    assert ledger.forget(CID, "inexistente") is False


def test_clear_conversation_only_affects_its_conversation(ledger):
    ledger.record(CID, make_action("ap1", "appointment"))
    ledger.record("outra:conversa", make_action("x1"))

    ledger.clear_conversation(CID)

    assert ledger.entries(CID) == []
    assert ledger.last_touched_appointment_id(CID) is None
    assert [a.id for a in ledger.entries("outra:conversa")] == ["x1"]


def test_snapshot_is_serializable(ledger):
    ledger.record(CID, make_action("ap1", "appointment", title="Reunião"))
    snapshot = ledger.snapshot(CID)
    assert snapshot["last_touched_appointment_id"] == "ap1"
    assert snapshot["recent_actions"][0]["created_at"] == BASE.isoformat()
    assert snapshot["recent_actions"][0]["data"] == {"title": "Reunião"}
