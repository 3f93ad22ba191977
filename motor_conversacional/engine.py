# motor_conversacional/engine.py

"""
Orquestrador do motor de resolução de intenção.

Camada fina sobre o grafo `app_graph`:
1.  Serializa o processamento por conversa (trava da conversa no store).
2.  Monta a fotografia de contexto (livro de ações, foco, tarefa ativa, último
    estado válido) que o NLU recebe como dica.
3.  Invoca o grafo e devolve o `SemanticState` final.
4.  Nunca deixa uma exceção escapar: qualquer falha vira o chat de recuo.

Também expõe os ganchos de manutenção que os serviços de livro-caixa e agenda
chamam depois de persistir algo (`record_materialized_action`,
`forget_action`, `clear_conversation_state`).
"""

from typing import Any, Callable, Dict, List, Optional

from motor_conversacional.memory.action_ledger import ActionLedger
from motor_conversacional.memory.focus_lock import FocusLock
from motor_conversacional.memory.semantic_memory import SemanticMemory
from motor_conversacional.memory.session_tasks import SessionTaskQueue
from motor_conversacional.memory.store import InMemoryConversationStore
from motor_conversacional.models.semantic_state import (
    SemanticState, RecentAction, ConversationOwner, ErrorCodes
)
from motor_conversacional.services.category_normalizer import normalize_category
from motor_conversacional.tasks.graph.builder import app_graph
from motor_conversacional.tasks.graph.nodes import RETRY_MESSAGE
from motor_conversacional.temporal.resolver import TemporalResolver
from motor_conversacional.utils.observability import log_with_context, track_performance, correlation_ctx

logger = log_with_context(component="ConversationEngine")


class ConversationEngine:

    def __init__(self, infer: Callable, resolver: TemporalResolver = None, find_upcoming: Callable = None,
                 normalize: Callable = None, store=None):
        self.infer = infer
        self.resolver = resolver or TemporalResolver()
        self.normalize = normalize or normalize_category
        self.store = store or InMemoryConversationStore()

        self.ledger = ActionLedger(self.store)
        self.focus = FocusLock(self.store, self.resolver, find_upcoming=find_upcoming)
        self.tasks = SessionTaskQueue(self.store, self.resolver)
        self.memory = SemanticMemory(self.store)

    def snapshot(self, owner: ConversationOwner) -> Dict[str, Any]:
        cid = owner.conversation_id
        with self.store.session(cid):
            last_valid = self.memory.last_valid(cid)
            latest = self.ledger.most_recent_any(cid)
            return {
                "latest_action_id": latest.id if latest else None,
                "now": self.resolver.civil(self.resolver.now()).isoformat(),
                "timezone": self.resolver.timezone_name,
                "action_ledger": self.ledger.snapshot(cid),
                "focus": self.focus.snapshot(cid),
                "active_task": self.tasks.snapshot(cid),
                "last_valid_state": last_valid.to_dict() if last_valid else None,
            }

    @track_performance
    def resolve_intention(self, message: str, conversation_history: Optional[List[Dict[str, Any]]],
                          owner: ConversationOwner) -> SemanticState:
        """
        Resolve a mensagem em um `SemanticState` final, com `ready_to_save` decidido.

        Args:
            message: a mensagem do usuário.
            conversation_history: turnos anteriores ({role, content}).
            owner: dono da conversa.

        Returns:
            Sempre um estado bem formado, mesmo em caso de falha interna.
        """
        cid = owner.conversation_id
        correlation_ctx.set_correlation_id(f"conv_{cid}")
        logger.info("Iniciando resolução de intenção", conversation_id=cid)

        try:
            with self.store.session(cid):
                snapshot = self.snapshot(owner)
                snapshot["conversation_history"] = list(conversation_history or [])
                initial_state = {
                    "owner": owner,
                    "conversation_id": cid,
                    "message": message,
                    "conversation_history": list(conversation_history or []),
                    "snapshot": snapshot,
                }
                final_state = app_graph.invoke(initial_state, config={"configurable": {"engine": self}})
            return final_state["final_state"]

        except Exception as e:
            logger.exception(
                "Erro crítico na resolução de intenção.",
                conversation_id=cid,
                error=str(e),
                error_type=type(e).__name__
            )
            return SemanticState.chat_fallback(RETRY_MESSAGE, ErrorCodes.UNKNOWN_ERROR)

    # --- Ganchos de manutenção ---

    def record_materialized_action(self, owner: ConversationOwner, action_id: str, action_type: str,
                                   data: Optional[Dict[str, Any]] = None, created_at=None) -> RecentAction:
        """
        Registra uma ação que o serviço externo acabou de persistir. Encerra a
        tarefa ativa e limpa o contexto herdável, para que a mutação concluída
        não vaze para os próximos turnos.
        """
        cid = owner.conversation_id
        action = RecentAction(
            id=str(action_id),
            type=action_type,
            tenant_id=owner.tenant_id,
            user_id=owner.user_id,
            created_at=created_at or self.resolver.now(),
            data=dict(data or {}),
        )
        with self.store.session(cid):
            self.ledger.record(cid, action)
            self.tasks.clear_active(cid)
            if action.type == "appointment":
                self.focus.clear(cid, "appointment")
            self.memory.clear(cid)
        return action

    def forget_action(self, owner: ConversationOwner, action_id: str) -> bool:
        return self.ledger.forget(owner.conversation_id, str(action_id))

    def clear_conversation_state(self, owner: ConversationOwner) -> None:
        cid = owner.conversation_id
        with self.store.session(cid):
            self.ledger.clear_conversation(cid)
            self.focus.clear_all(cid)
            self.tasks.clear_active(cid)
            self.memory.clear(cid)
        self.store.drop(cid)
        logger.info("Estado da conversa limpo", conversation_id=cid)
