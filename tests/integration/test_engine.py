# tests/integration/test_engine.py
from datetime import datetime

import pytest
import pytz

from motor_conversacional import create_engine
from motor_conversacional.config import Config
from motor_conversacional.models.semantic_state import ConversationOwner, ErrorCodes, Intent
from motor_conversacional.services.heuristic_grammar import HeuristicGrammar
from motor_conversacional.tasks.graph.nodes import RETRY_MESSAGE


# --- Cenários ponta a ponta ---

def test_scenario_a_expense_is_ready(engine, owner):
    result = engine.resolve_intention("gastei 50 no mercado", [], owner)

    assert result.intent == Intent.REGISTER_EXPENSE
    assert result.amount == 50
    assert result.description == "mercado"
    assert result.category == "Alimentação"
    assert result.ready_to_save is True
    assert result.needs_clarification is False


def test_scenario_b_bare_appointment_asks_for_day_and_time(engine, owner):
    result = engine.resolve_intention("reunião", [], owner)

    assert result.intent == Intent.CREATE_APPOINTMENT
    assert result.ready_to_save is False
    assert result.needs_clarification is True
    assert result.error_code == ErrorCodes.INCOMPLETE_INTENT
    assert "dia" in result.clarification_message
    assert "horário" in result.clarification_message
    assert engine.tasks.get_active(owner.conversation_id).type == "create_appointment"


def test_scenario_c_time_correction_keeps_the_day(engine, owner, resolver):
    engine.record_materialized_action(owner, "X", "appointment", {
        "title": "Reunião", "scheduled_at": "2026-01-16T15:00:00-03:00",
    })

    result = engine.resolve_intention("não, é às 22h", [], owner)

    assert result.intent == Intent.UPDATE_APPOINTMENT
    assert result.target_id == "X"
    assert result.scheduled_at == "22:00"
    assert resolver.civil_date(result.scheduled_instant) == "2026-01-16"
    assert resolver.civil_clock(result.scheduled_instant) == "22:00"
    assert result.title is None
    assert result.description is None
    assert result.ready_to_save is True


# --- Tarefa ativa ---

def test_active_task_is_completed_by_follow_up(engine, owner):
    engine.resolve_intention("reunião", [], owner)

    result = engine.resolve_intention("amanhã às 15h", [], owner)

    assert result.intent == Intent.CREATE_APPOINTMENT
    assert result.title == "Reunião"
    assert result.scheduled_at == "15:00"
    assert result.scheduled_instant == datetime(2026, 1, 16, 18, 0, tzinfo=pytz.utc)
    assert result.ready_to_save is True
    assert engine.tasks.get_active(owner.conversation_id) is None


def test_off_topic_message_is_queued_and_replayed(engine, owner):
    engine.resolve_intention("reunião", [], owner)

    held = engine.resolve_intention("quanto gastei esse mês?", [], owner)

    assert held.needs_clarification is True
    assert held.ready_to_save is False
    assert '"Reunião"' in held.clarification_message
    assert engine.tasks.get_active(owner.conversation_id).queued_message == "quanto gastei esse mês?"

    done = engine.resolve_intention("amanhã às 15h", [], owner)

    assert done.ready_to_save is True
    assert done.follow_up_message == "quanto gastei esse mês?"


def test_new_appointment_with_other_title_is_queued(engine, owner):
    engine.resolve_intention("reunião amanhã", [], owner)

    held = engine.resolve_intention("dentista sexta 10h", [], owner)

    assert held.ready_to_save is False
    assert held.needs_clarification is True
    assert '"Reunião"' in held.clarification_message
    task = engine.tasks.get_active(owner.conversation_id)
    assert task.state.title == "Reunião"
    assert task.queued_message == "dentista sexta 10h"

    done = engine.resolve_intention("às 15h", [], owner)

    assert done.ready_to_save is True
    assert done.title == "Reunião"
    assert done.follow_up_message == "dentista sexta 10h"


def test_same_title_keeps_completing_the_task(engine, owner):
    engine.resolve_intention("reunião amanhã", [], owner)

    result = engine.resolve_intention("reunião às 15h", [], owner)

    assert result.ready_to_save is True
    assert result.title == "Reunião"
    assert result.scheduled_at == "15:00"


def test_cancel_drops_task_and_returns_queued_message(engine, owner):
    engine.resolve_intention("reunião", [], owner)
    engine.resolve_intention("quanto gastei esse mês?", [], owner)

    result = engine.resolve_intention("cancela", [], owner)

    assert result.intent == Intent.CANCEL
    assert result.follow_up_message == "quanto gastei esse mês?"
    assert engine.tasks.get_active(owner.conversation_id) is None
    assert "appointment" not in engine.snapshot(owner)["focus"]


def test_confirm_revalidates_incomplete_task(engine, owner):
    engine.resolve_intention("reunião amanhã", [], owner)

    result = engine.resolve_intention("sim", [], owner)

    assert result.intent == Intent.CREATE_APPOINTMENT
    assert result.ready_to_save is False
    assert result.clarification_message == 'Qual o horário do compromisso "Reunião"?'
    assert engine.tasks.get_active(owner.conversation_id) is not None


def test_confirm_without_task_is_not_actionable(engine, owner):
    result = engine.resolve_intention("sim", [], owner)
    assert result.intent == Intent.CONFIRM
    assert result.ready_to_save is False
    assert engine.snapshot(owner)["last_valid_state"] is None


def test_expired_task_no_longer_holds_the_conversation(engine, owner, clock):
    engine.resolve_intention("reunião", [], owner)
    clock.advance(minutes=11)

    result = engine.resolve_intention("gastei 20 na padaria", [], owner)

    assert result.intent == Intent.REGISTER_EXPENSE
    assert result.ready_to_save is True


# --- Horários ---

def test_past_time_today_asks_for_future_time(engine, owner):
    result = engine.resolve_intention("reunião hoje às 9h", [], owner)

    assert result.ready_to_save is False
    assert result.error_code == ErrorCodes.PAST_SCHEDULE


def test_same_day_grace_window_accepts_recent_time(engine, owner):
    result = engine.resolve_intention("reunião hoje às 11h30", [], owner)
    assert result.ready_to_save is True


def test_absolute_time_from_model_is_reduced_to_clock(engine_factory, scripted_nlu, owner, resolver):
    nlu = scripted_nlu({
        "intent": "create_appointment", "title": "Dentista", "periodo": "amanhã",
        "scheduled_at": "2026-01-20T10:00:00-03:00", "confidence": 0.9,
    })
    engine = engine_factory(infer=nlu)

    result = engine.resolve_intention("dentista amanhã às 10h", [], owner)

    assert result.scheduled_at == "10:00"
    assert resolver.civil_date(result.scheduled_instant) == "2026-01-16"
    assert result.ready_to_save is True


# --- Prontidão ---

def test_ready_state_never_asks_for_confirmation(engine_factory, scripted_nlu, owner):
    engine = engine_factory(infer=scripted_nlu({
        "intent": "register_expense", "amount": 80, "description": "gasolina", "confidence": 0.9,
        "needsConfirmation": True, "confirmationMessage": "Confirma?",
    }))

    result = engine.resolve_intention("abasteci 80", [], owner)

    assert result.ready_to_save is True
    assert result.needs_confirmation is False
    assert result.confirmation_message is None
    assert result.category == "Transporte"


def test_model_cannot_declare_ready(engine_factory, scripted_nlu, owner):
    engine = engine_factory(infer=scripted_nlu({
        "intent": "register_expense", "confidence": 0.9, "readyToSave": True,
    }))

    result = engine.resolve_intention("gastei", [], owner)

    assert result.ready_to_save is False
    assert result.clarification_message == "Qual foi o valor?"


def test_numeric_target_id_from_model_resolves_correction(engine_factory, scripted_nlu, owner):
    engine = engine_factory(infer=scripted_nlu({
        "intent": "update_expense", "targetId": 42, "amount": 30, "confidence": 0.9,
    }))
    engine.record_materialized_action(owner, 42, "expense", {"amount": 25})

    result = engine.resolve_intention("na verdade foram 30", [], owner)

    assert result.intent == Intent.UPDATE_EXPENSE
    assert result.target_id == "42"
    assert result.error_code is None
    assert result.ready_to_save is True


def test_unknown_revenue_gets_default_category(engine, owner):
    result = engine.resolve_intention("recebi 300 do cliente novo", [], owner)
    assert result.category == "Trabalho e Negócios"
    assert result.subcategory == "serviços profissionais"


# --- Falhas do colaborador ---

@pytest.mark.parametrize("response", [
    RuntimeError("rede fora"),
    {"intent": "voar", "confidence": 0.9},
    {"intent": "chat", "confidence": 3},
    "não é um objeto",
])
def test_collaborator_failure_falls_back_to_chat(engine_factory, scripted_nlu, owner, response):
    engine = engine_factory(infer=scripted_nlu(response))

    result = engine.resolve_intention("gastei 50 no mercado", [], owner)

    assert result.intent == Intent.CHAT
    assert result.confidence == 0.5
    assert result.needs_clarification is True
    assert result.clarification_message == RETRY_MESSAGE
    assert result.error_code == ErrorCodes.COLLABORATOR_FAILURE


def test_collaborator_failure_does_not_touch_local_state(engine_factory, scripted_nlu, owner):
    engine = engine_factory(infer=scripted_nlu(
        {"intent": "create_appointment", "title": "Reunião", "confidence": 0.9},
        TimeoutError("sem resposta"),
    ))
    engine.resolve_intention("reunião", [], owner)
    before = engine.snapshot(owner)

    engine.resolve_intention("amanhã às 15h", [], owner)

    after = engine.snapshot(owner)
    assert after["active_task"] == before["active_task"]
    assert after["last_valid_state"] == before["last_valid_state"]


def test_internal_error_never_escapes(engine, owner, mocker):
    mocker.patch.object(engine.memory, "inherit", side_effect=RuntimeError("bug"))

    result = engine.resolve_intention("quanto gastei hoje?", [], owner)

    assert result.intent == Intent.CHAT
    assert result.error_code == ErrorCodes.UNKNOWN_ERROR


def test_nlu_receives_context_snapshot(engine_factory, scripted_nlu, owner):
    nlu = scripted_nlu({"intent": "chat", "confidence": 0.9})
    engine = engine_factory(infer=nlu)
    engine.record_materialized_action(owner, "e1", "expense", {"amount": 50})
    history = [{"role": "user", "content": "oi"}]

    engine.resolve_intention("tudo bem?", history, owner)

    message, snapshot = nlu.calls[0]
    assert message == "tudo bem?"
    assert snapshot["conversation_history"] == history
    assert snapshot["latest_action_id"] == "e1"
    assert snapshot["action_ledger"]["recent_actions"][0]["id"] == "e1"
    assert snapshot["timezone"] == Config.CIVIL_TIMEZONE


# --- Herança de contexto ---

def test_follow_up_question_keeps_period(engine, owner):
    first = engine.resolve_intention("quanto gastei com alimentação essa semana?", [], owner)
    second = engine.resolve_intention("e com transporte?", [], owner)
    third = engine.resolve_intention("e hoje?", [], owner)

    assert (first.category, first.periodo) == ("Alimentação", "week")
    assert (second.category, second.periodo, second.query_type) == ("Transporte", "week", "gasto")
    assert (third.category, third.periodo) == ("Transporte", "today")
    assert third.ready_to_save is True


def test_query_without_period_defaults_to_today(engine, owner):
    result = engine.resolve_intention("quanto gastei com mercado?", [], owner)
    assert result.periodo == "today"
    assert result.category == "Alimentação"


# --- Resolução de referência ---

def test_cancel_uses_scored_calendar_search(engine, owner, calendar):
    result = engine.resolve_intention("cancela a reunião de amanhã", [], owner)

    assert result.intent == Intent.CANCEL_APPOINTMENT
    assert result.target_id == "cal-1"
    assert result.ready_to_save is True
    assert calendar.calls == 1


def test_focus_lock_wins_over_ledger(engine, owner):
    cid = owner.conversation_id
    engine.record_materialized_action(owner, "X", "appointment", {"scheduled_at": "2026-01-16T15:00:00-03:00"})
    engine.record_materialized_action(owner, "Y", "appointment", {"scheduled_at": "2026-01-17T09:00:00-03:00"})
    engine.focus.register_mention(cid, "appointment", target_id="X")
    engine.focus.register_mention(cid, "appointment", target_id="X")

    result = engine.resolve_intention("não, é às 22h", [], owner)

    assert result.target_id == "X"


def test_last_touched_appointment_is_the_last_resort(engine, owner):
    engine.record_materialized_action(owner, "ap1", "appointment", {})
    for i in range(10):
        engine.record_materialized_action(owner, f"e{i}", "expense", {})

    result = engine.resolve_intention("cancela a consulta", [], owner)

    # a busca pontuada não acha "consulta"; o livro já descartou ap1, mas o índice não
    assert result.target_id == "ap1"
    assert result.ready_to_save is True


def test_unresolvable_reference_lists_candidates(engine_factory, fake_calendar, owner):
    engine = engine_factory(find_upcoming=fake_calendar([
        {"id": "cal-9", "title": "Aula de inglês", "scheduled_at": "2026-01-19T19:00:00-03:00"},
    ]))

    result = engine.resolve_intention("muda pra sexta às 10h", [], owner)

    assert result.intent == Intent.UPDATE_APPOINTMENT
    assert result.ready_to_save is False
    assert result.error_code == ErrorCodes.AMBIGUOUS_REFERENCE
    assert "Aula de inglês (19/01 19:00)" in result.clarification_message


def test_reschedule_keeps_original_time_when_only_day_changes(engine, owner, resolver):
    engine.record_materialized_action(owner, "X", "appointment", {"scheduled_at": "2026-01-16T15:00:00-03:00"})

    result = engine.resolve_intention("muda pra segunda", [], owner)

    assert result.target_id == "X"
    assert resolver.civil_date(result.scheduled_instant) == "2026-01-19"
    assert resolver.civil_clock(result.scheduled_instant) == "15:00"


# --- Ganchos de manutenção ---

def test_record_materialized_action_closes_the_task(engine, owner):
    engine.resolve_intention("reunião", [], owner)

    action = engine.record_materialized_action(owner, 42, "appointment", {"title": "Reunião"})

    snapshot = engine.snapshot(owner)
    assert action.id == "42"
    assert snapshot["active_task"] is None
    assert snapshot["last_valid_state"] is None
    assert "appointment" not in snapshot["focus"]
    assert snapshot["action_ledger"]["last_touched_appointment_id"] == "42"


def test_forget_action(engine, owner):
    engine.record_materialized_action(owner, "e1", "expense", {"amount": 10})
    assert engine.forget_action(owner, "e1") is True
    assert engine.forget_action(owner, "e1") is False


def test_clear_conversation_state(engine, owner):
    engine.record_materialized_action(owner, "e1", "expense", {})
    engine.resolve_intention("reunião", [], owner)

    engine.clear_conversation_state(owner)

    assert owner.conversation_id not in engine.store
    snapshot = engine.snapshot(owner)
    assert snapshot["action_ledger"]["recent_actions"] == []
    assert snapshot["active_task"] is None


def test_conversations_are_isolated(engine, owner):
    other = ConversationOwner(tenant_id="empresa-1", user_id="5511888880000")
    engine.resolve_intention("reunião", [], owner)

    result = engine.resolve_intention("gastei 50 no mercado", [], other)

    assert result.ready_to_save is True
    assert engine.tasks.get_active(other.conversation_id) is None


# --- Fábrica ---

def test_factory_uses_grammar_without_api_key(mocker):
    mocker.patch.object(Config, "GOOGLE_API_KEY", None)
    assert isinstance(create_engine().infer, HeuristicGrammar)


def test_factory_uses_gemini_with_api_key(mocker):
    mocker.patch.object(Config, "GOOGLE_API_KEY", "chave-de-teste")
    client = mocker.patch("motor_conversacional.services.nlu_client.GeminiNLUClient")

    engine = create_engine()

    assert engine.infer is client.return_value
    client.assert_called_once_with(engine.resolver)
