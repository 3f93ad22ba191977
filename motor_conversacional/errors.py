# motor_conversacional/errors.py

"""
Taxonomia de falhas do motor.

Nenhuma destas exceções atravessa `resolve_intention`: cada uma é convertida,
dentro do pipeline, em um `SemanticState` válido (pedido de esclarecimento ou
intenção `chat`). O `error_code` vai junto no estado final.
"""

from typing import List, Optional

from motor_conversacional.models.semantic_state import ErrorCodes, CandidateMatch


class ResolutionError(Exception):
    error_code = ErrorCodes.UNKNOWN_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ParseFailure(ResolutionError):
    """Um token de horário ou data não pôde ser interpretado."""
    error_code = ErrorCodes.PARSE_FAILURE

    def __init__(self, message: str, token: Optional[str] = None):
        super().__init__(message)
        self.token = token


class IncompleteIntent(ResolutionError):
    """Faltam dados essenciais; `message` é a pergunta única ao usuário."""
    error_code = ErrorCodes.INCOMPLETE_INTENT

    def __init__(self, message: str, missing_fields: List[str], error_code: Optional[str] = None):
        super().__init__(message)
        self.missing_fields = missing_fields
        if error_code:
            self.error_code = error_code


class AmbiguousReference(ResolutionError):
    """Não foi possível saber a qual registro uma alteração se refere."""
    error_code = ErrorCodes.AMBIGUOUS_REFERENCE

    def __init__(self, message: str, candidates: Optional[List[CandidateMatch]] = None):
        super().__init__(message)
        self.candidates = candidates or []


class CollaboratorFailure(ResolutionError):
    """O colaborador de NLU falhou ou devolveu dados fora do contrato."""
    error_code = ErrorCodes.COLLABORATOR_FAILURE


class StaleReference(ResolutionError):
    """Foco ou tarefa ativa lidos depois de expirados. Tratado como ausência."""
    error_code = ErrorCodes.STALE_REFERENCE
