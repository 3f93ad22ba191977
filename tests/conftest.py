import pytest
from datetime import datetime, timedelta

import pytz

from motor_conversacional import create_engine
from motor_conversacional.memory.store import InMemoryConversationStore
from motor_conversacional.models.semantic_state import ConversationOwner
from motor_conversacional.services.heuristic_grammar import HeuristicGrammar
from motor_conversacional.temporal.resolver import TemporalResolver

# Quinta-feira, 15/01/2026, 12:00 em São Paulo (UTC-3, sem horário de verão)
FROZEN_NOW = datetime(2026, 1, 15, 15, 0, tzinfo=pytz.utc)


class FrozenClock:
    """Relógio controlável: chamado, devolve o instante atual; `advance` anda no tempo."""

    def __init__(self, start: datetime = FROZEN_NOW):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


class ScriptedNLU:
    """NLU falso: devolve (ou levanta) as respostas roteirizadas, em ordem."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, message, context_snapshot):
        self.calls.append((message, context_snapshot))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeCalendar:
    """Agenda externa falsa com a assinatura `find_upcoming(owner, from_instant)`."""

    def __init__(self, items=None):
        self.items = list(items or [])
        self.calls = 0

    def __call__(self, owner, from_instant):
        self.calls += 1
        return list(self.items)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def resolver(clock):
    return TemporalResolver(timezone_name="America/Sao_Paulo", clock=clock)


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def owner():
    return ConversationOwner(tenant_id="empresa-1", user_id="5511999990000")


@pytest.fixture
def calendar():
    return FakeCalendar([
        {"id": "cal-1", "title": "Reunião", "scheduled_at": "2026-01-16T15:00:00-03:00",
         "description": "Reunião no escritório"},
        {"id": "cal-2", "title": "Dentista", "scheduled_at": "2026-01-20T10:00:00-03:00",
         "description": "Consultório Dr. Paulo"},
    ])


@pytest.fixture
def engine_factory(clock, store):
    """Monta um motor com a gramática heurística como NLU, salvo se outro for passado."""
    def _build(infer=None, find_upcoming=None):
        return create_engine(
            infer=infer or HeuristicGrammar(),
            find_upcoming=find_upcoming,
            store=store,
            clock=clock,
        )
    return _build


@pytest.fixture
def engine(engine_factory, calendar):
    return engine_factory(find_upcoming=calendar)


@pytest.fixture
def scripted_nlu():
    """Fábrica de NLUs roteirizados: `scripted_nlu({...}, RuntimeError(...))`."""
    return ScriptedNLU


@pytest.fixture
def fake_calendar():
    """Fábrica de agendas falsas: `fake_calendar([...])`."""
    return FakeCalendar
