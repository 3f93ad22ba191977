# motor_conversacional/tasks/graph/builder.py

"""
Construtor do grafo de resolução de intenção.

Define as etapas (nós), a ordem entre elas (arestas) e os desvios
condicionais:
- se o NLU falhou, o fluxo pula direto para `finalize` com o chat de recuo,
  sem tocar na memória da conversa;
- se há tarefa ativa e a mensagem é um cancelamento ou um assunto paralelo,
  o fluxo vai direto para `commit` (cancelar a tarefa ou guardar a mensagem).

O grafo não conhece os colaboradores: eles chegam em
`config["configurable"]["engine"]` a cada execução. Por isso `app_graph`
é compilado uma única vez, na importação do módulo.
"""

from langgraph.graph import StateGraph, END
from .state import ResolutionState
from .nodes import (
    infer_node,
    postprocess_node,
    focus_node,
    inherit_node,
    reference_node,
    schedule_node,
    validate_node,
    commit_node,
    finalize_node,
)


def _after_infer(state: ResolutionState) -> str:
    return "fallback" if state.get("failure") else "continue"


def _after_focus(state: ResolutionState) -> str:
    return "commit" if state.get("task_decision") in ("cancel", "queue") else "inherit"


def build_graph():
    """
    Constrói e compila o grafo de resolução usando StateGraph.

    Returns:
        Um grafo compilado e executável.
    """
    workflow = StateGraph(ResolutionState)

    # --- ETAPA 1: Nós ---
    workflow.add_node("infer", infer_node)
    workflow.add_node("postprocess", postprocess_node)
    workflow.add_node("focus", focus_node)
    workflow.add_node("inherit", inherit_node)
    workflow.add_node("reference", reference_node)
    workflow.add_node("schedule", schedule_node)
    workflow.add_node("validate", validate_node)
    workflow.add_node("commit", commit_node)
    workflow.add_node("finalize", finalize_node)

    # --- ETAPA 2: Ponto de entrada ---
    workflow.set_entry_point("infer")

    # --- ETAPA 3: Arestas condicionais ---
    workflow.add_conditional_edges(
        "infer",
        _after_infer,
        {
            "fallback": "finalize",
            "continue": "postprocess",
        }
    )
    workflow.add_edge("postprocess", "focus")
    workflow.add_conditional_edges(
        "focus",
        _after_focus,
        {
            "commit": "commit",
            "inherit": "inherit",
        }
    )

    # --- ETAPA 4: Fluxo sequencial ---
    workflow.add_edge("inherit", "reference")
    workflow.add_edge("reference", "schedule")
    workflow.add_edge("schedule", "validate")
    workflow.add_edge("validate", "commit")
    workflow.add_edge("commit", "finalize")
    workflow.add_edge("finalize", END)

    return workflow.compile()


# --- Instância única e compilada do grafo ---
app_graph = build_graph()
