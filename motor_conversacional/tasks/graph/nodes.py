# motor_conversacional/tasks/graph/nodes.py

"""
Nós do pipeline de resolução de intenção.

Cada função segue o contrato do LangGraph:
1.  Recebe o `ResolutionState` atual e o `RunnableConfig`; o motor
    (`ConversationEngine`, com seus colaboradores e memórias) chega em
    `config["configurable"]["engine"]`.
2.  Executa uma etapa determinística.
3.  Retorna só as chaves do estado que deseja atualizar.

Ordem: infer -> postprocess -> focus -> inherit -> reference -> schedule ->
validate -> commit -> finalize. Só o `commit` altera a memória da conversa.
"""

from typing import Any, Dict, Optional

from langchain_core.runnables import RunnableConfig
from pydantic import ValidationError

from motor_conversacional.errors import (
    AmbiguousReference, CollaboratorFailure, IncompleteIntent, ParseFailure
)
from motor_conversacional.memory.semantic_memory import apply_default_period
from motor_conversacional.models.semantic_state import (
    SemanticState, Intent, ErrorCodes, ReferenceCriteria, ActiveTask,
    REGISTER_INTENTS, UPDATE_INTENTS, TARGETED_INTENTS, APPOINTMENT_INTENTS,
    ANALYTICAL_INTENTS, ACTION_TYPE_BY_INTENT,
)
from motor_conversacional.services.category_normalizer import default_category_for
from motor_conversacional.services.heuristic_grammar import extract_appointment_fields
from motor_conversacional.temporal.resolver import (
    canonical_period, parse_clock_token, format_clock, is_day_period
)
from motor_conversacional.utils.normalize_text import fold_text
from motor_conversacional.utils.observability import log_with_context
from .state import ResolutionState

logger = log_with_context(component="GraphNodes")

RETRY_MESSAGE = "Não consegui entender. Pode reformular?"

# Campos que o modelo não pode preencher
_DERIVED_KEYS = {"readyToSave", "ready_to_save", "scheduled_instant", "error_code", "follow_up_message"}

# Campos que contam como "alteração" num update
_CHANGE_FIELDS = ("amount", "title", "scheduled_at", "periodo", "description", "category", "location")

# Campos que uma continuação de tarefa pode sobrescrever
_MERGE_FIELDS = ("domain", "periodo", "title", "scheduled_at", "location", "description", "target_id")

_CATEGORIZED_INTENTS = REGISTER_INTENTS | ANALYTICAL_INTENTS | {Intent.UPDATE_EXPENSE, Intent.UPDATE_REVENUE}

_DOMAIN_BY_INTENT = {
    Intent.REGISTER_EXPENSE: "financeiro",
    Intent.REGISTER_REVENUE: "financeiro",
    Intent.UPDATE_EXPENSE: "financeiro",
    Intent.UPDATE_REVENUE: "financeiro",
    Intent.CREATE_APPOINTMENT: "agenda",
    Intent.UPDATE_APPOINTMENT: "agenda",
    Intent.CANCEL_APPOINTMENT: "agenda",
}


def _engine(config: RunnableConfig):
    return config["configurable"]["engine"]


def parse_guess(raw: Any) -> SemanticState:
    """Valida o palpite bruto do NLU. Qualquer desvio do contrato é falha do colaborador."""
    if not isinstance(raw, dict):
        raise CollaboratorFailure(f"Palpite do NLU não é um objeto: {type(raw).__name__}")
    cleaned = {k: v for k, v in raw.items() if k not in _DERIVED_KEYS}
    try:
        return SemanticState.model_validate(cleaned)
    except ValidationError as e:
        raise CollaboratorFailure(f"Palpite do NLU fora do contrato: {e.error_count()} erro(s)") from e


def normalize_clock(token: Optional[str], resolver) -> Optional[str]:
    """
    Reduz o horário vindo do modelo a "HH:MM". Se o modelo mandou um instante
    absoluto, só o horário de parede é aproveitado; a data é descartada.
    """
    if not token:
        return None
    clock = parse_clock_token(token)
    if clock:
        return format_clock(*clock)
    instant = resolver.to_instant(token)
    if instant is not None:
        logger.warning("Instante absoluto vindo do NLU reduzido a horário", token=token)
        return resolver.civil_clock(instant)
    raise ParseFailure(f"Horário não interpretável: {token!r}", token=token)


def _keep_focus_message(task: ActiveTask) -> str:
    subject = f'o compromisso "{task.state.title}"' if task.state.title else "o compromisso"
    return (
        f"Antes, vamos concluir {subject} que estávamos marcando? "
        "Responda \"sim\" para salvar, complete os dados que faltam ou diga \"cancelar\". "
        "Sua outra mensagem fica guardada."
    )


# --- Nós ---

def infer_node(state: ResolutionState, config: RunnableConfig) -> Dict[str, Any]:
    """Uma chamada ao colaborador de NLU. Falha vira chat de recuo."""
    logger.info("Executando infer_node", conversation_id=state["conversation_id"])
    engine = _engine(config)

    try:
        raw = engine.infer(state["message"], state["snapshot"])
        semantic = parse_guess(raw)
    except CollaboratorFailure as e:
        logger.error("Palpite do NLU rejeitado.", conversation_id=state["conversation_id"], error=e.message)
        return {
            "failure": e.error_code,
            "semantic_state": SemanticState.chat_fallback(RETRY_MESSAGE, e.error_code),
        }
    except Exception as e:
        logger.exception("Colaborador de NLU falhou.", conversation_id=state["conversation_id"],
                         error_type=type(e).__name__)
        return {
            "failure": ErrorCodes.COLLABORATOR_FAILURE,
            "semantic_state": SemanticState.chat_fallback(RETRY_MESSAGE, ErrorCodes.COLLABORATOR_FAILURE),
        }

    logger.info(f"Intenção detectada: {semantic.intent.value}", confidence=semantic.confidence)
    return {"raw_guess": raw, "semantic_state": semantic}


def postprocess_node(state: ResolutionState, config: RunnableConfig) -> Dict[str, Any]:
    """Pós-processamento determinístico: domínio, tokens de tempo e categoria."""
    logger.info("Executando postprocess_node", conversation_id=state["conversation_id"])
    engine = _engine(config)
    semantic = state["semantic_state"]
    changes: Dict[str, Any] = {}

    if not semantic.domain and semantic.intent in _DOMAIN_BY_INTENT:
        changes["domain"] = _DOMAIN_BY_INTENT[semantic.intent]

    periodo, scheduled_at, title = semantic.periodo, semantic.scheduled_at, semantic.title
    if semantic.intent == Intent.CREATE_APPOINTMENT and not (periodo and scheduled_at and title):
        found = extract_appointment_fields(state["message"])
        periodo = periodo or found["periodo"]
        scheduled_at = scheduled_at or found["scheduled_at"]
        title = title or found["title"]
        changes["title"] = title

    if periodo:
        changes["periodo"] = canonical_period(periodo)
        if changes["periodo"] is None:
            logger.warning("Período desconhecido descartado", periodo=periodo)

    if scheduled_at:
        try:
            changes["scheduled_at"] = normalize_clock(scheduled_at, engine.resolver)
        except ParseFailure as e:
            logger.warning("Horário descartado", token=e.token, error_code=e.error_code)
            changes["scheduled_at"] = None
            changes["error_code"] = e.error_code

    if semantic.intent in _CATEGORIZED_INTENTS:
        changes.update(_normalize_category(engine, semantic))

    return {"semantic_state": semantic.with_updates(**changes)}


def _normalize_category(engine, semantic: SemanticState) -> Dict[str, Any]:
    term = semantic.category
    if not term and semantic.intent in REGISTER_INTENTS:
        term = semantic.description
    if not term:
        return {}

    try:
        result = engine.normalize(term) or {}
    except Exception as e:
        logger.error("Normalizador de categoria falhou; mantendo o termo original.", error=str(e))
        return {}

    if result.get("category"):
        return {
            "category": result["category"],
            "subcategory": semantic.subcategory or result.get("subcategory"),
        }
    if semantic.intent in REGISTER_INTENTS and not semantic.category:
        return default_category_for(semantic.intent.value)
    return {}


def _continues_task(task: ActiveTask, semantic: SemanticState) -> bool:
    if semantic.intent == Intent.CREATE_APPOINTMENT:
        # Outro título é outro compromisso: não sobrescreve a tarefa em andamento
        current, incoming = fold_text(task.state.title), fold_text(semantic.title)
        return not (current and incoming and current != incoming)
    if semantic.intent == Intent.UPDATE_APPOINTMENT:
        return True
    return semantic.intent == Intent.CHAT and bool(semantic.scheduled_at or semantic.periodo)


def focus_node(state: ResolutionState, config: RunnableConfig) -> Dict[str, Any]:
    """Decide o que fazer com a tarefa ativa (se houver)."""
    logger.info("Executando focus_node", conversation_id=state["conversation_id"])
    engine = _engine(config)
    task = engine.tasks.get_active(state["conversation_id"])
    semantic = state["semantic_state"]

    if task is None:
        return {"active_task": None, "task_decision": None}

    if semantic.intent == Intent.CONFIRM:
        merged = task.state.with_updates(needs_confirmation=False, confirmation_message=None)
        return {"active_task": task, "task_decision": "confirm", "semantic_state": merged}

    if semantic.intent == Intent.CANCEL:
        return {"active_task": task, "task_decision": "cancel"}

    if _continues_task(task, semantic):
        updates = {field: getattr(semantic, field) for field in _MERGE_FIELDS
                   if getattr(semantic, field) is not None}
        merged = task.state.with_updates(
            confidence=max(task.state.confidence, semantic.confidence),
            needs_clarification=False,
            clarification_message=None,
            **updates,
        )
        logger.info("Mensagem continua a tarefa ativa", fields=sorted(updates.keys()))
        return {"active_task": task, "task_decision": "continue", "semantic_state": merged}

    logger.info("Mensagem fora da tarefa ativa; será colocada em fila", intent=semantic.intent.value)
    held = semantic.with_updates(
        ready_to_save=False,
        needs_clarification=True,
        clarification_message=_keep_focus_message(task),
    )
    return {"active_task": task, "task_decision": "queue", "semantic_state": held}


def inherit_node(state: ResolutionState, config: RunnableConfig) -> Dict[str, Any]:
    logger.info("Executando inherit_node", conversation_id=state["conversation_id"])
    engine = _engine(config)
    semantic = engine.memory.inherit(state["conversation_id"], state["semantic_state"])
    return {"semantic_state": apply_default_period(semantic)}


def _target_date(engine, semantic: SemanticState, lock) -> Optional[str]:
    # Em update o período é a data NOVA; só cancelamento usa o período como critério
    if semantic.intent == Intent.CANCEL_APPOINTMENT and is_day_period(semantic.periodo):
        return engine.resolver.day_for_period(semantic.periodo)
    return lock.date if lock else None


def _resolve_reference(engine, state: ResolutionState, semantic: SemanticState):
    """Trava de foco -> busca pontuada -> livro de ações. Devolve (id, instante, origem)."""
    cid = state["conversation_id"]
    action_type = ACTION_TYPE_BY_INTENT[semantic.intent]

    if semantic.target_id:
        action = engine.ledger.find(cid, semantic.target_id)
        return semantic.target_id, (action.data.get("scheduled_at") if action else None), "nlu"

    lock = None
    if action_type == "appointment":
        lock = engine.focus.has_lock(cid, "appointment")
        if lock and lock.target_id:
            action = engine.ledger.find(cid, lock.target_id)
            return lock.target_id, (action.data.get("scheduled_at") if action else None), "focus_lock"

        criteria = ReferenceCriteria(
            title=semantic.title or (lock.title if lock else None),
            location=semantic.location or (lock.location if lock else None),
            date=_target_date(engine, semantic, lock),
        )
        if criteria.title or criteria.location or criteria.date:
            try:
                candidates = engine.focus.find_matching_candidates(state["owner"], criteria)
            except CollaboratorFailure:
                candidates = []
            if candidates:
                best = candidates[0]
                if len(candidates) > 1:
                    logger.info("Vários candidatos; usando o de maior pontuação",
                                chosen=best.id, score=best.score, total=len(candidates))
                return best.id, best.scheduled_at, "candidate_search"

    action = engine.ledger.last_of_type(cid, action_type)
    if action is not None:
        return action.id, action.data.get("scheduled_at"), "action_ledger"

    if action_type == "appointment":
        last_touched = engine.ledger.last_touched_appointment_id(cid)
        if last_touched:
            return last_touched, None, "last_touched"

    raise AmbiguousReference(
        "Não consegui identificar o registro.",
        candidates=engine.focus.upcoming(state["owner"]) if action_type == "appointment" else [],
    )


def _ambiguity_message(semantic: SemanticState, error: AmbiguousReference) -> str:
    noun = "compromisso" if semantic.intent in APPOINTMENT_INTENTS else "registro"
    if not error.candidates:
        return f"Qual {noun} você quer alterar? Me diga o título e o dia."
    options = "; ".join(
        f"{c.title or 'sem título'} ({c.scheduled_at})" for c in error.candidates[:3]
    )
    return f"Qual {noun} você quer alterar? Encontrei: {options}."


def reference_node(state: ResolutionState, config: RunnableConfig) -> Dict[str, Any]:
    """Resolve `target_id` para updates e cancelamentos."""
    semantic = state["semantic_state"]
    if semantic.intent not in TARGETED_INTENTS:
        return {}

    logger.info("Executando reference_node", conversation_id=state["conversation_id"])
    engine = _engine(config)
    try:
        target_id, target_scheduled_at, source = _resolve_reference(engine, state, semantic)
    except AmbiguousReference as e:
        logger.info("Referência ambígua", conversation_id=state["conversation_id"],
                    candidates=len(e.candidates))
        return {"blocking_issue": {"message": _ambiguity_message(semantic, e), "error_code": e.error_code}}

    logger.info("Referência resolvida", target_id=target_id, source=source)
    return {
        "semantic_state": semantic.with_updates(target_id=target_id),
        "target_instant": engine.resolver.to_instant(target_scheduled_at),
    }


def schedule_node(state: ResolutionState, config: RunnableConfig) -> Dict[str, Any]:
    """Calcula o instante absoluto de compromissos (o `scheduled_at` continua solto)."""
    semantic = state["semantic_state"]
    if semantic.intent not in (Intent.CREATE_APPOINTMENT, Intent.UPDATE_APPOINTMENT):
        return {}

    logger.info("Executando schedule_node", conversation_id=state["conversation_id"])
    resolver = _engine(config).resolver
    instant = None

    if semantic.intent == Intent.CREATE_APPOINTMENT:
        if is_day_period(semantic.periodo) and semantic.scheduled_at:
            instant = resolver.resolve_relative(semantic.periodo, semantic.scheduled_at)
    else:
        base = state.get("target_instant")
        if is_day_period(semantic.periodo):
            clock = semantic.scheduled_at or (resolver.civil_clock(base) if base else None)
            instant = resolver.resolve_relative(semantic.periodo, clock)
        elif semantic.scheduled_at and base is not None:
            instant = resolver.apply_time_to_same_day(base, semantic.scheduled_at)

    return {"semantic_state": semantic.with_updates(scheduled_instant=instant)}


def _check_future(resolver, semantic: SemanticState) -> None:
    if semantic.scheduled_instant and not resolver.is_not_in_the_past(semantic.scheduled_instant):
        raise IncompleteIntent(
            "Esse horário já passou. Para quando devo marcar?",
            missing_fields=["scheduled_at"],
            error_code=ErrorCodes.PAST_SCHEDULE,
        )


def check_completeness(semantic: SemanticState, resolver) -> bool:
    """
    Valida os campos essenciais de cada intenção. Levanta `IncompleteIntent`
    com UMA pergunta quando falta algo. Devolve se o estado é executável.
    """
    intent = semantic.intent

    if intent in REGISTER_INTENTS:
        if not semantic.amount or semantic.amount <= 0:
            raise IncompleteIntent("Qual foi o valor?", missing_fields=["amount"])
        if not (semantic.description or "").strip():
            question = "Com o que foi esse gasto?" if intent == Intent.REGISTER_EXPENSE else "De onde veio esse valor?"
            raise IncompleteIntent(question, missing_fields=["description"])
        return True

    if intent == Intent.CREATE_APPOINTMENT:
        has_day = is_day_period(semantic.periodo)
        has_time = parse_clock_token(semantic.scheduled_at) is not None
        subject = f'o compromisso "{semantic.title}"' if semantic.title else "o compromisso"
        of_subject = f'do compromisso "{semantic.title}"' if semantic.title else "do compromisso"
        if not has_day and not has_time:
            raise IncompleteIntent(f"Quando vai ser {subject}? Me diga o dia e o horário.",
                                   missing_fields=["periodo", "scheduled_at"])
        if not has_day:
            raise IncompleteIntent(f"Para qual dia é {subject}?", missing_fields=["periodo"])
        if not has_time:
            raise IncompleteIntent(f"Qual o horário {of_subject}?", missing_fields=["scheduled_at"])
        if not semantic.title:
            raise IncompleteIntent("Qual o nome desse compromisso?", missing_fields=["title"])
        if semantic.scheduled_instant is None:
            raise IncompleteIntent(f"Não entendi o horário {of_subject}. Pode repetir?",
                                   missing_fields=["scheduled_at"])
        _check_future(resolver, semantic)
        return True

    if intent in UPDATE_INTENTS:
        if not semantic.target_id:
            raise IncompleteIntent("Qual registro você quer alterar?", missing_fields=["target_id"])
        if not any(getattr(semantic, field) is not None for field in _CHANGE_FIELDS):
            raise IncompleteIntent("O que você quer mudar?", missing_fields=list(_CHANGE_FIELDS))
        if intent == Intent.UPDATE_APPOINTMENT and (semantic.scheduled_at or semantic.periodo):
            if semantic.scheduled_instant is None:
                raise IncompleteIntent("Para qual dia e horário devo mudar?",
                                       missing_fields=["periodo", "scheduled_at"])
            _check_future(resolver, semantic)
        return True

    if intent == Intent.CANCEL_APPOINTMENT:
        if not semantic.target_id:
            raise IncompleteIntent("Qual compromisso você quer cancelar?", missing_fields=["target_id"])
        return True

    return intent in ANALYTICAL_INTENTS


def validate_node(state: ResolutionState, config: RunnableConfig) -> Dict[str, Any]:
    logger.info("Executando validate_node", conversation_id=state["conversation_id"])
    semantic = state["semantic_state"]

    issue = state.get("blocking_issue")
    if issue:
        return {"semantic_state": semantic.with_updates(
            ready_to_save=False,
            needs_clarification=True,
            clarification_message=issue["message"],
            error_code=issue["error_code"],
        )}

    try:
        ready = check_completeness(semantic, _engine(config).resolver)
    except IncompleteIntent as e:
        logger.info("Intenção incompleta", missing=e.missing_fields, error_code=e.error_code)
        return {"semantic_state": semantic.with_updates(
            ready_to_save=False,
            needs_clarification=True,
            clarification_message=e.message,
            error_code=e.error_code,
        )}

    if ready:
        # Pronto para executar: nunca pede esclarecimento nem confirmação extra
        semantic = semantic.with_updates(
            ready_to_save=True,
            needs_clarification=False,
            clarification_message=None,
            needs_confirmation=False,
            confirmation_message=None,
            error_code=None,
        )
    else:
        semantic = semantic.with_updates(ready_to_save=False)
    return {"semantic_state": semantic}


def _mention_date(engine, state: ResolutionState, semantic: SemanticState) -> Optional[str]:
    resolver = engine.resolver
    if semantic.intent == Intent.CREATE_APPOINTMENT:
        if semantic.scheduled_instant:
            return resolver.civil_date(semantic.scheduled_instant)
        return resolver.day_for_period(semantic.periodo)
    if state.get("target_instant"):
        return resolver.civil_date(state["target_instant"])
    return _target_date(engine, semantic, None)


def commit_node(state: ResolutionState, config: RunnableConfig) -> Dict[str, Any]:
    """Aplica as mudanças na memória da conversa. Único nó com efeitos colaterais."""
    logger.info("Executando commit_node", conversation_id=state["conversation_id"])
    engine = _engine(config)
    cid = state["conversation_id"]
    semantic = state["semantic_state"]
    decision = state.get("task_decision")

    if decision == "queue":
        engine.tasks.queue_message(cid, state["message"])
        return {"semantic_state": semantic}

    if decision == "cancel":
        follow_up = engine.tasks.consume_queued_message(cid)
        engine.tasks.clear_active(cid)
        engine.focus.clear(cid, "appointment")
        logger.info("Tarefa ativa cancelada pelo usuário", conversation_id=cid)
        return {"semantic_state": semantic.with_updates(follow_up_message=follow_up)}

    if semantic.intent in (Intent.CREATE_APPOINTMENT, Intent.UPDATE_APPOINTMENT):
        if semantic.ready_to_save:
            if decision in ("confirm", "continue"):
                semantic = semantic.with_updates(follow_up_message=engine.tasks.consume_queued_message(cid))
            engine.tasks.clear_active(cid)
        else:
            engine.tasks.set_active(cid, semantic.intent.value, semantic)

    if semantic.intent in APPOINTMENT_INTENTS:
        mention_date = _mention_date(engine, state, semantic)
        if semantic.target_id or semantic.title or semantic.location or mention_date:
            engine.focus.register_mention(
                cid, "appointment",
                target_id=semantic.target_id,
                title=semantic.title if semantic.intent != Intent.UPDATE_APPOINTMENT else None,
                location=semantic.location,
                date=mention_date,
            )

    if semantic.intent not in (Intent.CONFIRM, Intent.CANCEL):
        engine.memory.save_last_valid(cid, semantic)
    return {"semantic_state": semantic}


def finalize_node(state: ResolutionState, config: RunnableConfig) -> Dict[str, Any]:
    semantic = state["semantic_state"]
    logger.info(
        "Resolução concluída",
        conversation_id=state["conversation_id"],
        intent=semantic.intent.value,
        ready_to_save=semantic.ready_to_save,
        needs_clarification=semantic.needs_clarification,
        error_code=semantic.error_code,
    )
    return {"final_state": semantic}
