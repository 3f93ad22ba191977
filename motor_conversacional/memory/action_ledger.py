# motor_conversacional/memory/action_ledger.py

"""
Livro de ações recentes (por conversa).

Guarda as últimas N ações materializadas (despesa, receita, compromisso), a mais
recente primeiro, para permitir "corrige o último" sem perguntar qual. Um índice
à parte, `last_touched_appointment_id`, aponta para o compromisso criado ou
alterado por último e sobrevive ao descarte FIFO do livro.
"""

from typing import Any, Dict, List, Optional

from motor_conversacional.config import Config
from motor_conversacional.models.semantic_state import RecentAction
from motor_conversacional.utils.observability import log_with_context

logger = log_with_context(component="ActionLedger")


class ActionLedger:

    def __init__(self, store, capacity: int = None):
        self._store = store
        self.capacity = capacity or Config.ACTION_LEDGER_CAPACITY

    def record(self, conversation_id: str, action: RecentAction) -> None:
        """Upsert por id: remove a versão antiga e insere na frente."""
        with self._store.session(conversation_id) as bundle:
            actions = [a for a in bundle.actions if a.id != action.id]
            actions.insert(0, action)
            evicted = actions[self.capacity:]
            bundle.actions = actions[:self.capacity]
            if action.type == 'appointment':
                bundle.last_touched_appointment_id = action.id

        if evicted:
            logger.debug("Ações descartadas por capacidade", conversation_id=conversation_id,
                         evicted=[a.id for a in evicted])
        logger.info("Ação registrada", conversation_id=conversation_id, action_id=action.id,
                    action_type=action.type)

    def last_of_type(self, conversation_id: str, action_type: str) -> Optional[RecentAction]:
        with self._store.session(conversation_id) as bundle:
            return next((a for a in bundle.actions if a.type == action_type), None)

    def most_recent_any(self, conversation_id: str) -> Optional[RecentAction]:
        with self._store.session(conversation_id) as bundle:
            return bundle.actions[0] if bundle.actions else None

    def find(self, conversation_id: str, action_id: str) -> Optional[RecentAction]:
        with self._store.session(conversation_id) as bundle:
            return next((a for a in bundle.actions if a.id == action_id), None)

    def entries(self, conversation_id: str) -> List[RecentAction]:
        with self._store.session(conversation_id) as bundle:
            return list(bundle.actions)

    def last_touched_appointment_id(self, conversation_id: str) -> Optional[str]:
        with self._store.session(conversation_id) as bundle:
            return bundle.last_touched_appointment_id

    def forget(self, conversation_id: str, action_id: str) -> bool:
        """Remove a ação; se era o último compromisso tocado, reaponta o índice."""
        with self._store.session(conversation_id) as bundle:
            before = len(bundle.actions)
            bundle.actions = [a for a in bundle.actions if a.id != action_id]
            if bundle.last_touched_appointment_id == action_id:
                bundle.last_touched_appointment_id = next(
                    (a.id for a in bundle.actions if a.type == 'appointment'), None
                )
            removed = len(bundle.actions) != before

        logger.info("Ação esquecida", conversation_id=conversation_id, action_id=action_id, removed=removed)
        return removed

    def clear_conversation(self, conversation_id: str) -> None:
        with self._store.session(conversation_id) as bundle:
            bundle.actions = []
            bundle.last_touched_appointment_id = None

    def snapshot(self, conversation_id: str) -> Dict[str, Any]:
        with self._store.session(conversation_id) as bundle:
            return {
                "recent_actions": [
                    {"id": a.id, "type": a.type, "created_at": a.created_at.isoformat(), "data": a.data}
                    for a in bundle.actions
                ],
                "last_touched_appointment_id": bundle.last_touched_appointment_id,
            }
