# motor_conversacional/tasks/llm_fallback.py

from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_core.runnables import Runnable, RunnableConfig
from langchain_core.messages import BaseMessage
from motor_conversacional.config import Config
from motor_conversacional.utils.observability import log_with_context
import google.api_core.exceptions
from typing import List

logger = log_with_context(component="LLMFallback")

RECOVERABLE_ERRORS = (
    google.api_core.exceptions.ResourceExhausted,
    google.api_core.exceptions.ServiceUnavailable,
    google.api_core.exceptions.InternalServerError,
    google.api_core.exceptions.DeadlineExceeded,
    TimeoutError,
)

class FallbackLLM(Runnable):
    """
    Um Runnable que tenta uma lista de modelos Gemini em sequência.
    Cada modelo tem seu próprio timeout; esgotado o tempo (ou a cota), passa
    para o próximo. Erros não recuperáveis abortam na hora.
    """
    def __init__(self, model_names: List[str] = None, temperature: float = None, timeout: float = None):
        self.model_names = model_names or Config.LLM_MODEL_LIST
        temperature = Config.NLU_TEMPERATURE if temperature is None else temperature
        timeout = timeout or Config.NLU_TIMEOUT_SECONDS

        if not self.model_names:
            raise ValueError("A lista de modelos LLM não pode estar vazia.")

        self.runnables = [
            ChatGoogleGenerativeAI(
                model=name,
                google_api_key=Config.GOOGLE_API_KEY,
                temperature=temperature,
                timeout=timeout,
                max_retries=0,
            ) for name in self.model_names
        ]

    def invoke(self, messages: list[BaseMessage], config: RunnableConfig = None, **kwargs) -> BaseMessage:
        """
        Invoca os modelos em ordem e retorna o resultado do primeiro que responder.
        """
        last_error = None

        for model_name, runnable in zip(self.model_names, self.runnables):
            try:
                logger.info(f"Tentando invocar o modelo: {model_name}")
                result = runnable.invoke(messages, config=config, **kwargs)

                # Verificação de resposta bloqueada por segurança
                finish_reason = getattr(result, 'response_metadata', {}).get("finish_reason", "UNSPECIFIED")
                if finish_reason == "SAFETY":
                    logger.warning(f"Modelo {model_name} bloqueou a resposta por motivos de segurança.")
                    raise ValueError("A solicitação foi bloqueada pelos filtros de segurança do modelo.")

                logger.info(f"Modelo {model_name} invocado com sucesso.")
                return result

            except RECOVERABLE_ERRORS as e:
                logger.warning(
                    f"Modelo {model_name} falhou com um erro recuperável ({type(e).__name__}). Tentando o próximo.",
                    error=str(e)
                )
                last_error = e
                continue

            except Exception as e:
                logger.error(f"Erro não recuperável com o modelo {model_name}. Abortando.", error=str(e))
                raise

        if last_error:
            raise last_error
        raise RuntimeError(f"Todos os modelos de fallback falharam: {self.model_names}")
