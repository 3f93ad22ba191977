# motor_conversacional/services/nlu_client.py

"""
Colaborador de NLU baseado no Gemini.

Implementa o contrato `infer(message, context_snapshot) -> dict`: uma única
chamada ao modelo (com fallback entre modelos via `FallbackLLM`) que devolve um
JSON no formato do `SemanticState`. O modelo recebe as fotografias do livro de
ações, do foco, da tarefa ativa e do último estado válido como dicas de contexto.

O modelo NÃO calcula datas. Ele devolve só tokens ("amanhã", "15:00"); o
Resolvedor Temporal faz a conta depois. Qualquer falha (rede, timeout, JSON
inválido) vira `CollaboratorFailure`.
"""

import json
from typing import Any, Dict, List

from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import JsonOutputParser
from langchain_core.prompts import ChatPromptTemplate

from motor_conversacional.config import Config
from motor_conversacional.errors import CollaboratorFailure
from motor_conversacional.tasks.llm_fallback import FallbackLLM
from motor_conversacional.utils.observability import log_with_context

logger = log_with_context(component="GeminiNLUClient")

SYSTEM_PROMPT = """
**PERSONA:** Você é o analisador de intenções de um assistente financeiro e de agenda que conversa pelo WhatsApp. Sua única função é transformar a mensagem do usuário em um JSON estruturado. Você não executa nada e não conversa.

**CONTEXTO ATUAL:**
- Data e hora atuais (fuso {timezone}): {now}
- Histórico recente da conversa: {history}
- Memória de curto prazo (ações recentes, foco, tarefa ativa, último estado válido): {snapshot}

**INTENÇÕES PERMITIDAS:**
register_expense, register_revenue, create_appointment, update_expense, update_revenue,
update_appointment, cancel_appointment, query, report, chat, confirm, cancel.

**REGRAS CRÍTICAS:**
1.  **NUNCA calcule datas.** Em `periodo` use apenas: hoje, amanhã, ontem, semana, mês, ano ou o nome do dia da semana (segunda, terça...). Em `scheduled_at` use apenas o horário solto, como "15:00" ou "22h". Nunca devolva uma data ISO.
2.  **NÃO INVENTE CAMPOS.** Se a mensagem não diz o título, a descrição ou o valor, use null. Uma correção como "não, é às 22h" altera SÓ o horário: `title` e `description` ficam null.
3.  **CORREÇÕES:** "na verdade", "não, é...", "muda pra..." sobre algo recém-registrado são `update_*`. Se a memória mostra o registro afetado, preencha `targetId` com o id dele; caso contrário deixe null.
4.  **CONTINUAÇÃO:** Perguntas curtas como "e hoje?" ou "e com transporte?" continuam a consulta anterior (`query`). Preencha só o que mudou.
5.  **TAREFA ATIVA:** Se há uma tarefa ativa e a mensagem completa ou corrige essa tarefa, use a mesma intenção dela. "sim", "pode", "isso" são `confirm`; "não", "cancela" sozinhos são `cancel`.
6.  **CONVERSA:** Saudações, agradecimentos e perguntas gerais são `chat`.
7.  **CONFIANÇA:** `confidence` entre 0 e 1. Use menos de 0.7 quando estiver em dúvida real.
8.  Não preencha `readyToSave`: o sistema decide isso.

**EXEMPLOS:**
- "gastei 50 no mercado" -> {{"intent": "register_expense", "domain": "financeiro", "amount": 50, "description": "mercado", "category": "mercado", "confidence": 0.95}}
- "reunião amanhã às 15h" -> {{"intent": "create_appointment", "domain": "agenda", "title": "Reunião", "periodo": "amanhã", "scheduled_at": "15:00", "confidence": 0.95}}
- "quanto gastei com alimentação essa semana?" -> {{"intent": "query", "domain": "financeiro", "queryType": "gasto", "category": "alimentação", "periodo": "semana", "confidence": 0.9}}
- "e com transporte?" -> {{"intent": "query", "category": "transporte", "confidence": 0.85}}

**FORMATO DE SAÍDA OBRIGATÓRIO:** Responda APENAS com um objeto JSON com as chaves:
intent, domain, periodo, category, subcategory, queryType, amount, title, scheduled_at, location, description,
confidence, needsClarification, clarificationMessage, needsConfirmation, confirmationMessage, targetId.
"""


def _message_text(content: Any) -> str:
    # Alguns modelos devolvem o conteúdo em partes
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, dict):
            parts.append(part.get("text", ""))
        else:
            parts.append(str(part))
    return "".join(parts)


class GeminiNLUClient:

    def __init__(self, resolver, llm=None, history_window: int = None):
        self.resolver = resolver
        self.llm = llm or FallbackLLM()
        self.history_window = history_window or Config.HISTORY_WINDOW
        self.prompt = ChatPromptTemplate.from_messages([
            ("system", SYSTEM_PROMPT),
            ("human", "{message}"),
        ])
        self.parser = JsonOutputParser()

    def _format_history(self, history: List[Dict[str, Any]]) -> str:
        recent = (history or [])[-self.history_window:]
        return json.dumps(
            [{"role": turn.get("role"), "content": turn.get("content") or turn.get("message")} for turn in recent],
            ensure_ascii=False,
        )

    def infer(self, message: str, context_snapshot: Dict[str, Any]) -> Dict[str, Any]:
        snapshot = dict(context_snapshot or {})
        history = snapshot.pop("conversation_history", [])
        messages = self.prompt.format_messages(
            timezone=self.resolver.timezone_name,
            now=self.resolver.civil(self.resolver.now()).strftime("%Y-%m-%d %H:%M (%A)"),
            history=self._format_history(history),
            snapshot=json.dumps(snapshot, ensure_ascii=False, default=str),
            message=message,
        )

        try:
            ai_msg = self.llm.invoke(messages)
            guess = self.parser.parse(_message_text(ai_msg.content))
        except OutputParserException as e:
            logger.error("Resposta do modelo não é um JSON válido.", error=str(e))
            raise CollaboratorFailure("Resposta do NLU fora do formato") from e
        except Exception as e:
            logger.error("Falha na chamada ao modelo de NLU.", error=str(e), error_type=type(e).__name__)
            raise CollaboratorFailure(f"Chamada ao NLU falhou: {type(e).__name__}") from e

        if not isinstance(guess, dict):
            logger.error("Resposta do modelo não é um objeto JSON.", received_type=type(guess).__name__)
            raise CollaboratorFailure("Resposta do NLU não é um objeto")

        logger.info("Palpite do NLU recebido", intent=guess.get("intent"), confidence=guess.get("confidence"))
        return guess

    __call__ = infer
