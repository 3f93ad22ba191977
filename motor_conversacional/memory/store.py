# motor_conversacional/memory/store.py

"""
Armazenamento do estado transitório por conversa.

Cada conversa tem um `ConversationBundle` com o livro de ações, os alvos em foco,
a tarefa ativa e o último estado válido. O acesso a um bundle é serializado por
uma trava própria da conversa (RLock, para permitir que o orquestrador segure a
trava enquanto os componentes a readquirem). Conversas diferentes nunca
disputam a mesma trava; só a criação de entradas no mapa usa a trava global.

Tudo fica em memória e expira de forma preguiçosa, na leitura. Nenhum dado aqui
é registro oficial: o livro-caixa e a agenda vivem em serviços externos.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from motor_conversacional.models.semantic_state import (
    RecentAction, FocusTarget, ActiveTask, SemanticState
)
from motor_conversacional.utils.observability import log_with_context

logger = log_with_context(component="ConversationStore")


class ConversationBundle:
    """Todo o estado transitório de uma conversa."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        self.actions: List[RecentAction] = []
        self.last_touched_appointment_id: Optional[str] = None
        self.focus: Dict[str, FocusTarget] = {}
        self.active_task: Optional[ActiveTask] = None
        self.last_valid_state: Optional[SemanticState] = None

    def is_empty(self) -> bool:
        return not (self.actions or self.last_touched_appointment_id or self.focus
                    or self.active_task or self.last_valid_state)


class InMemoryConversationStore:
    """Mapa conversa -> bundle, com uma trava por conversa."""

    def __init__(self):
        self._bundles: Dict[str, ConversationBundle] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._map_lock = threading.Lock()

    def _lock_for(self, conversation_id: str) -> threading.RLock:
        with self._map_lock:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[conversation_id] = lock
            return lock

    @contextmanager
    def session(self, conversation_id: str) -> Iterator[ConversationBundle]:
        """Dá acesso exclusivo ao bundle da conversa durante o bloco `with`."""
        with self._lock_for(conversation_id):
            with self._map_lock:
                bundle = self._bundles.get(conversation_id)
                if bundle is None:
                    bundle = ConversationBundle(conversation_id)
                    self._bundles[conversation_id] = bundle
            yield bundle

    def drop(self, conversation_id: str) -> None:
        with self._lock_for(conversation_id):
            with self._map_lock:
                self._bundles.pop(conversation_id, None)
        logger.info("Estado da conversa descartado", conversation_id=conversation_id)

    def purge_empty(self) -> int:
        """Varredura opcional de higiene: remove bundles vazios. Devolve quantos saíram."""
        with self._map_lock:
            candidates = list(self._bundles.keys())
        removed = 0
        for conversation_id in candidates:
            with self.session(conversation_id) as bundle:
                if bundle.is_empty():
                    with self._map_lock:
                        self._bundles.pop(conversation_id, None)
                    removed += 1
        return removed

    def __contains__(self, conversation_id: str) -> bool:
        with self._map_lock:
            return conversation_id in self._bundles
