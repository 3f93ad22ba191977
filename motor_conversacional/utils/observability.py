# motor_conversacional/utils/observability.py
import logging
import sys
import time
import functools
import threading
from typing import Callable, Any

import structlog


class CorrelationContext:
    """Gerenciador de contexto para correlation IDs (um por thread)."""

    def __init__(self):
        self._storage = threading.local()

    def set_correlation_id(self, correlation_id: str):
        self._storage.correlation_id = correlation_id

    def get_correlation_id(self) -> str:
        return getattr(self._storage, 'correlation_id', 'unknown')

# Instância global do gerenciador de contexto
correlation_ctx = CorrelationContext()


def add_correlation_id(logger, method_name, event_dict):
    """Processor do structlog: carimba o correlation ID vigente no momento do log."""
    event_dict.setdefault("correlation_id", correlation_ctx.get_correlation_id())
    return event_dict


# Configurar structlog
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_correlation_id,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(ensure_ascii=False)  # Saída em JSON para fácil parsing
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

# Criar logger principal
logger = structlog.get_logger("motor_conversacional")

_logging_configured = False

def setup_logging(level=logging.INFO):
    """Configura o handler raiz (idempotente: só a primeira chamada vale)."""
    global _logging_configured
    if _logging_configured:
        return
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    _logging_configured = True

def track_performance(func: Callable) -> Callable:
    """Decorator para rastrear a duração das chamadas públicas do motor"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        start_time = time.perf_counter()
        function_name = func.__qualname__

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(
                "function_failed",
                function=function_name,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error=str(e),
                error_type=type(e).__name__,
                success=False
            )
            raise

        logger.info(
            "function_completed",
            function=function_name,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            success=True
        )
        return result

    return wrapper

def log_with_context(**kwargs):
    """Logger com contexto fixo (ex.: `component`); o correlation ID entra a cada evento."""
    return logger.bind(**kwargs)
