# motor_conversacional/models/semantic_state.py

"""
Modelos de dados do motor de resolução de intenções.

`SemanticState` é a unidade que todos os componentes produzem e consomem. Os
demais modelos são os registros mantidos em memória por conversa: ações
materializadas (`RecentAction`), o alvo em foco (`FocusTarget`) e a tarefa
ativa (`ActiveTask`).

Os campos seguem snake_case, mas aceitam os nomes camelCase que o modelo de
linguagem devolve (`needsClarification`, `targetId`...).
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Intent(str, Enum):
    REGISTER_EXPENSE = "register_expense"
    REGISTER_REVENUE = "register_revenue"
    CREATE_APPOINTMENT = "create_appointment"
    UPDATE_EXPENSE = "update_expense"
    UPDATE_REVENUE = "update_revenue"
    UPDATE_APPOINTMENT = "update_appointment"
    CANCEL_APPOINTMENT = "cancel_appointment"
    QUERY = "query"
    REPORT = "report"
    CHAT = "chat"
    CONFIRM = "confirm"
    CANCEL = "cancel"


REGISTER_INTENTS = {Intent.REGISTER_EXPENSE, Intent.REGISTER_REVENUE}
UPDATE_INTENTS = {Intent.UPDATE_EXPENSE, Intent.UPDATE_REVENUE, Intent.UPDATE_APPOINTMENT}
TARGETED_INTENTS = UPDATE_INTENTS | {Intent.CANCEL_APPOINTMENT}
APPOINTMENT_INTENTS = {Intent.CREATE_APPOINTMENT, Intent.UPDATE_APPOINTMENT, Intent.CANCEL_APPOINTMENT}
ANALYTICAL_INTENTS = {Intent.QUERY, Intent.REPORT}

# Tipo de ação do livro de ações afetada por cada intenção direcionada
ACTION_TYPE_BY_INTENT = {
    Intent.UPDATE_EXPENSE: "expense",
    Intent.UPDATE_REVENUE: "revenue",
    Intent.UPDATE_APPOINTMENT: "appointment",
    Intent.CANCEL_APPOINTMENT: "appointment",
}

ActionType = Literal["expense", "revenue", "appointment"]


class SemanticState(BaseModel):
    """
    O que o usuário quer, de forma estruturada.

    `scheduled_at` é sempre um horário "solto" ("15:00", "22h"), nunca um
    instante absoluto. O instante absoluto, quando calculável, fica em
    `scheduled_instant` (datetime UTC).
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    intent: Intent
    domain: Optional[Literal["financeiro", "agenda", "geral"]] = None
    periodo: Optional[str] = None
    category: Optional[str] = Field(default=None, alias="categoria")
    subcategory: Optional[str] = Field(default=None, alias="subcategoria")
    query_type: Optional[str] = Field(default=None, alias="queryType")
    amount: Optional[float] = None
    title: Optional[str] = None
    scheduled_at: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    confidence: float = Field(ge=0, le=1)
    needs_clarification: bool = Field(default=False, alias="needsClarification")
    clarification_message: Optional[str] = Field(default=None, alias="clarificationMessage")
    needs_confirmation: bool = Field(default=False, alias="needsConfirmation")
    confirmation_message: Optional[str] = Field(default=None, alias="confirmationMessage")
    target_id: Optional[str] = Field(default=None, alias="targetId")

    # --- Campos derivados (nunca vindos do modelo de linguagem) ---
    ready_to_save: bool = Field(default=False, alias="readyToSave")
    scheduled_instant: Optional[datetime] = None
    error_code: Optional[str] = None
    follow_up_message: Optional[str] = None

    @field_validator("target_id", mode="before")
    @classmethod
    def coerce_target_id(cls, v):
        """O modelo costuma devolver ids numéricos; o livro de ações guarda strings."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(int(v)) if float(v).is_integer() else str(v)
        return v

    def with_updates(self, **changes) -> 'SemanticState':
        return self.model_copy(update=changes)

    def to_dict(self) -> Dict[str, Any]:
        """Converte para dicionário serializável, removendo campos None"""
        dumped = self.model_dump(mode="json")
        return {k: v for k, v in dumped.items() if v is not None}

    @classmethod
    def chat_fallback(cls, message: str, error_code: Optional[str] = None) -> 'SemanticState':
        """Estado de recuo quando não foi possível entender a mensagem."""
        return cls(
            intent=Intent.CHAT,
            confidence=0.5,
            needs_clarification=True,
            clarification_message=message,
            error_code=error_code,
        )


class ConversationOwner(BaseModel):
    """Dono da conversa; a chave de todo o estado transitório."""
    tenant_id: str
    user_id: str

    @property
    def conversation_id(self) -> str:
        return f"{self.tenant_id}:{self.user_id}"


class RecentAction(BaseModel):
    id: str
    type: ActionType
    tenant_id: str
    user_id: str
    created_at: datetime
    data: Dict[str, Any] = Field(default_factory=dict)


class FocusTarget(BaseModel):
    conversation_id: str
    type: str
    target_id: Optional[str] = None
    title: Optional[str] = None
    location: Optional[str] = None
    date: Optional[str] = None  # data civil "AAAA-MM-DD"
    mentions: int = 1
    last_mention: datetime
    confidence: float = 0.5

    @property
    def is_locked(self) -> bool:
        return self.mentions >= 2 and self.confidence >= 0.7


class ActiveTask(BaseModel):
    conversation_id: str
    type: Literal["create_appointment", "update_appointment"]
    state: SemanticState
    created_at: datetime
    updated_at: datetime
    queued_message: Optional[str] = None


class CandidateMatch(BaseModel):
    """Compromisso futuro pontuado pela busca de candidatos."""
    id: str
    title: Optional[str] = None
    scheduled_at: Optional[str] = None
    description: Optional[str] = None
    score: int = 0


class ReferenceCriteria(BaseModel):
    title: Optional[str] = None
    location: Optional[str] = None
    date: Optional[str] = None


# Códigos de erro padronizados
class ErrorCodes:
    PARSE_FAILURE = "PARSE_FAILURE"
    INCOMPLETE_INTENT = "INCOMPLETE_INTENT"
    AMBIGUOUS_REFERENCE = "AMBIGUOUS_REFERENCE"
    COLLABORATOR_FAILURE = "COLLABORATOR_FAILURE"
    STALE_REFERENCE = "STALE_REFERENCE"
    PAST_SCHEDULE = "PAST_SCHEDULE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
