# motor_conversacional/__init__.py

"""
Ponto de Entrada e Fábrica do Motor de Resolução de Intenções.

Responsável por criar e configurar uma instância de `ConversationEngine`.

- O logging estruturado é configurado uma única vez, na primeira fábrica chamada.
- Os colaboradores podem ser injetados; os que faltarem recebem o padrão:
  NLU do Gemini quando há `GOOGLE_API_KEY` (senão a gramática heurística),
  o normalizador de categorias embutido e o armazenamento em memória.
- Sem `find_upcoming` a busca de candidatos na agenda fica desligada e as
  referências são resolvidas só pela trava de foco e pelo livro de ações.
"""

from motor_conversacional.config import Config
from motor_conversacional.engine import ConversationEngine
from motor_conversacional.memory.store import InMemoryConversationStore
from motor_conversacional.models.semantic_state import SemanticState, ConversationOwner, Intent
from motor_conversacional.services.category_normalizer import normalize_category
from motor_conversacional.services.heuristic_grammar import HeuristicGrammar
from motor_conversacional.temporal.resolver import TemporalResolver
from motor_conversacional.utils.observability import setup_logging, log_with_context

logger = log_with_context(component="Factory")


def create_engine(infer=None, find_upcoming=None, normalize=None, store=None, clock=None):
    """Cria e configura a instância do motor."""

    # Configura o logging estruturado para todo o pacote.
    setup_logging(Config.LOG_LEVEL)

    resolver = TemporalResolver(clock=clock)

    if infer is None:
        if Config.GOOGLE_API_KEY:
            # Import tardio: evita instanciar os clientes do Gemini sem chave
            from motor_conversacional.services.nlu_client import GeminiNLUClient
            infer = GeminiNLUClient(resolver)
            logger.info("NLU configurado", collaborator="gemini", models=Config.LLM_MODEL_LIST)
        else:
            infer = HeuristicGrammar()
            logger.info("NLU configurado", collaborator="heuristic_grammar")

    return ConversationEngine(
        infer=infer,
        resolver=resolver,
        find_upcoming=find_upcoming,
        normalize=normalize or normalize_category,
        store=store or InMemoryConversationStore(),
    )


__all__ = ["create_engine", "ConversationEngine", "SemanticState", "ConversationOwner", "Intent"]
