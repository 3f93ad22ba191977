# Arquivo: /motor_conversacional/config.py

import os
from dotenv import load_dotenv
from datetime import timedelta

load_dotenv()

class Config:
    """Configuração do motor de resolução de intenções, lida do ambiente."""
    GOOGLE_API_KEY = os.environ.get('GOOGLE_API_KEY')
    LLM_MODEL_LIST = [
        model.strip() for model in
        os.environ.get('LLM_MODEL_LIST', 'gemini-2.5-flash-lite, gemini-2.5-flash').split(',')
        if model.strip()
    ]
    NLU_TEMPERATURE = float(os.environ.get('NLU_TEMPERATURE', '0'))
    NLU_TIMEOUT_SECONDS = float(os.environ.get('NLU_TIMEOUT_SECONDS', '20'))

    # Fuso civil em que todo horário dito pelo usuário é interpretado
    CIVIL_TIMEZONE = os.environ.get('CIVIL_TIMEZONE', 'America/Sao_Paulo')

    ACTION_LEDGER_CAPACITY = int(os.environ.get('ACTION_LEDGER_CAPACITY', '10'))
    FOCUS_LOCK_TTL = timedelta(minutes=int(os.environ.get('FOCUS_LOCK_TTL_MINUTES', '5')))
    ACTIVE_TASK_TTL = timedelta(minutes=int(os.environ.get('ACTIVE_TASK_TTL_MINUTES', '10')))
    PAST_TIME_GRACE_MINUTES = int(os.environ.get('PAST_TIME_GRACE_MINUTES', '60'))

    HISTORY_WINDOW = int(os.environ.get('HISTORY_WINDOW', '10'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
