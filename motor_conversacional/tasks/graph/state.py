# motor_conversacional/tasks/graph/state.py

"""
Contrato de dados do pipeline de resolução de intenção.

`ResolutionState` é o que flui entre os nós do grafo durante UMA mensagem.
Cada nó lê o que precisa e devolve só as chaves que quer atualizar. O estado
persistente da conversa (livro de ações, foco, tarefa ativa, último estado
válido) NÃO mora aqui: ele fica no `ConversationStore` e só é alterado pelo nó
`commit`, depois que o palpite do NLU foi validado.
"""

from datetime import datetime
from typing import List, Dict, TypedDict, Optional, Any

from motor_conversacional.models.semantic_state import SemanticState, ActiveTask, ConversationOwner


class ResolutionState(TypedDict, total=False):
    """
    Atributos:
        # --- Entrada ---
        owner: dono da conversa (tenant + usuário).
        conversation_id: chave derivada do dono.
        message: a mensagem exata do usuário.
        conversation_history: turnos anteriores ({role, content}).
        snapshot: fotografia da memória de curto prazo enviada ao NLU.

        # --- Execução ---
        raw_guess: o JSON devolvido pelo NLU (ou pela gramática heurística).
        semantic_state: o `SemanticState` em construção.
        failure: código de erro quando o NLU falhou; desvia direto para o fim.
        active_task: a tarefa ativa lida no início do fluxo.
        task_decision: "continue", "confirm", "cancel" ou "queue" (None sem tarefa).
        target_instant: instante atual do registro alvo de um update.
        blocking_issue: pendência que impede a validação normal (referência ambígua).

        # --- Saída ---
        final_state: o `SemanticState` devolvido a quem chamou.
    """

    # --- Entrada ---
    owner: ConversationOwner
    conversation_id: str
    message: str
    conversation_history: List[Dict[str, Any]]
    snapshot: Dict[str, Any]

    # --- Execução ---
    raw_guess: Optional[Dict[str, Any]]
    semantic_state: Optional[SemanticState]
    failure: Optional[str]
    active_task: Optional[ActiveTask]
    task_decision: Optional[str]
    target_instant: Optional[datetime]
    blocking_issue: Optional[Dict[str, Any]]

    # --- Saída ---
    final_state: Optional[SemanticState]
