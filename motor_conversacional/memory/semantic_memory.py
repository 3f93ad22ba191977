# motor_conversacional/memory/semantic_memory.py

"""
Estado semântico e herança de contexto entre turnos.

Guarda, por conversa, o último estado "válido" (confiança >= 0.7 e intenção
diferente de chat) e usa-o para preencher lacunas do turno seguinte:

- `domain` é herdado sempre que vier vazio;
- `periodo` só é herdado por `query`/`report` (registros agem sobre "agora");
- `query_type` só é herdado por `query`;
- trocar de categoria mantém a categoria nova, mas a janela de tempo continua;
- `query` sem categoria herda categoria e subcategoria.

Se a intenção muda e nenhuma das duas é `query`, nada é herdado.

"Quanto gastei com alimentação essa semana?" -> "e com transporte?" vira
transporte na mesma semana.
"""

from typing import Optional

from motor_conversacional.models.semantic_state import SemanticState, Intent, ANALYTICAL_INTENTS
from motor_conversacional.utils.observability import log_with_context

logger = log_with_context(component="SemanticMemory")

MIN_VALID_CONFIDENCE = 0.7
DEFAULT_ANALYTICAL_PERIOD = "today"


def inherit_context(prior: Optional[SemanticState], new_state: SemanticState) -> SemanticState:
    if prior is None:
        return new_state

    if new_state.intent != prior.intent and Intent.QUERY not in (new_state.intent, prior.intent):
        logger.info("Intenção mudou, contexto não herdado",
                    prior_intent=prior.intent.value, new_intent=new_state.intent.value)
        return new_state

    changes = {}
    if not new_state.domain and prior.domain:
        changes['domain'] = prior.domain

    if not new_state.periodo and prior.periodo and new_state.intent in ANALYTICAL_INTENTS:
        changes['periodo'] = prior.periodo

    if not new_state.query_type and prior.query_type and new_state.intent == Intent.QUERY:
        changes['query_type'] = prior.query_type

    # Categoria diferente: fica a nova, o período já foi tratado acima
    if not new_state.category and prior.category and new_state.intent == Intent.QUERY:
        changes['category'] = prior.category
        if not new_state.subcategory and prior.subcategory:
            changes['subcategory'] = prior.subcategory

    if changes:
        logger.info("Contexto herdado", fields=sorted(changes.keys()))
    return new_state.with_updates(**changes)


def apply_default_period(state: SemanticState) -> SemanticState:
    """
    Política de produto: consulta ou relatório sem período nenhum (nem herdado)
    fala de hoje. Intenções de registro nunca recebem período padrão.
    """
    if state.intent in ANALYTICAL_INTENTS and not state.periodo:
        logger.info("Período padrão aplicado", intent=state.intent.value, periodo=DEFAULT_ANALYTICAL_PERIOD)
        return state.with_updates(periodo=DEFAULT_ANALYTICAL_PERIOD)
    return state


class SemanticMemory:
    """Último estado válido por conversa."""

    def __init__(self, store):
        self._store = store

    def save_last_valid(self, conversation_id: str, state: SemanticState) -> bool:
        if state.confidence < MIN_VALID_CONFIDENCE or state.intent == Intent.CHAT:
            return False
        with self._store.session(conversation_id) as bundle:
            bundle.last_valid_state = state.model_copy()
        logger.debug("Estado válido salvo", conversation_id=conversation_id, intent=state.intent.value,
                     periodo=state.periodo, category=state.category)
        return True

    def last_valid(self, conversation_id: str) -> Optional[SemanticState]:
        with self._store.session(conversation_id) as bundle:
            state = bundle.last_valid_state
            return state.model_copy() if state else None

    def inherit(self, conversation_id: str, new_state: SemanticState) -> SemanticState:
        return inherit_context(self.last_valid(conversation_id), new_state)

    def clear(self, conversation_id: str) -> None:
        with self._store.session(conversation_id) as bundle:
            bundle.last_valid_state = None
