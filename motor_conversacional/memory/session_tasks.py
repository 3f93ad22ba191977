# motor_conversacional/memory/session_tasks.py

"""
Fila de tarefa da sessão: no máximo uma tarefa ativa por conversa.

Uma tarefa ativa é um create/update de compromisso ainda incompleto. Ela pode
segurar uma única mensagem fora de assunto (`queued_message`) para ser
reprocessada quando a tarefa terminar. Expira `Config.ACTIVE_TASK_TTL` (10 min)
depois da última atualização, verificado na leitura.
"""

from typing import Any, Dict, Optional

from motor_conversacional.config import Config
from motor_conversacional.errors import StaleReference
from motor_conversacional.models.semantic_state import ActiveTask, SemanticState
from motor_conversacional.utils.observability import log_with_context

logger = log_with_context(component="SessionTaskQueue")


class SessionTaskQueue:

    def __init__(self, store, resolver, ttl=None):
        self._store = store
        self._resolver = resolver
        self.ttl = ttl or Config.ACTIVE_TASK_TTL

    def _ensure_fresh(self, task: ActiveTask) -> ActiveTask:
        if self._resolver.now() - task.updated_at > self.ttl:
            raise StaleReference(f"Tarefa ativa expirada em {task.conversation_id}")
        return task

    def _fresh_task(self, bundle) -> Optional[ActiveTask]:
        if bundle.active_task is None:
            return None
        try:
            return self._ensure_fresh(bundle.active_task)
        except StaleReference as e:
            logger.debug("Tarefa ativa expirada descartada", conversation_id=bundle.conversation_id,
                         error_code=e.error_code)
            bundle.active_task = None
            return None

    def set_active(self, conversation_id: str, task_type: str, state: SemanticState) -> ActiveTask:
        """Cria ou sobrescreve a tarefa, preservando `created_at` e a mensagem em fila."""
        now = self._resolver.now()
        with self._store.session(conversation_id) as bundle:
            existing = self._fresh_task(bundle)
            task = ActiveTask(
                conversation_id=conversation_id,
                type=task_type,
                state=state,
                created_at=existing.created_at if existing else now,
                updated_at=now,
                queued_message=existing.queued_message if existing else None,
            )
            bundle.active_task = task

        logger.info("Tarefa ativa definida", conversation_id=conversation_id, type=task_type)
        return task.model_copy()

    def get_active(self, conversation_id: str) -> Optional[ActiveTask]:
        with self._store.session(conversation_id) as bundle:
            task = self._fresh_task(bundle)
            return task.model_copy() if task else None

    def clear_active(self, conversation_id: str) -> None:
        with self._store.session(conversation_id) as bundle:
            bundle.active_task = None

    def queue_message(self, conversation_id: str, text: str) -> bool:
        """Anexa (sobrescrevendo) a mensagem pendente. False se não há tarefa ativa."""
        with self._store.session(conversation_id) as bundle:
            task = self._fresh_task(bundle)
            if task is None:
                return False
            task.queued_message = text
            task.updated_at = self._resolver.now()

        logger.info("Mensagem colocada em fila", conversation_id=conversation_id)
        return True

    def consume_queued_message(self, conversation_id: str) -> Optional[str]:
        with self._store.session(conversation_id) as bundle:
            task = self._fresh_task(bundle)
            if task is None or task.queued_message is None:
                return None
            text = task.queued_message
            task.queued_message = None
            return text

    def snapshot(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        task = self.get_active(conversation_id)
        if task is None:
            return None
        return {
            "type": task.type,
            "state": task.state.to_dict(),
            "has_queued_message": task.queued_message is not None,
        }
