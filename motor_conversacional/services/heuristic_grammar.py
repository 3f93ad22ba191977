# motor_conversacional/services/heuristic_grammar.py

"""
Gramática heurística de extração (sem LLM).

Lista ordenada de regras `GrammarRule(name, pattern, extractor)`, avaliadas
sobre o texto normalizado (minúsculas, sem acentos). A primeira regra que casa
vence. Cada extrator devolve um "palpite bruto" no mesmo formato JSON que o
colaborador de NLU devolve, para que os dois caminhos passem pela mesma
validação.

Usos:
- NLU principal quando não há modelo configurado (`infer`);
- preenchimento de título/dia/horário que o modelo deixou vazios em
  `create_appointment` (`extract_appointment_fields`).

A gramática não calcula datas: devolve tokens ("amanha", "15h") que o
Resolvedor Temporal converte depois.
"""

import re
import unicodedata
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Pattern

from motor_conversacional.temporal.resolver import canonical_period
from motor_conversacional.utils.normalize_text import fold_text
from motor_conversacional.utils.observability import log_with_context

logger = log_with_context(component="HeuristicGrammar")

_AMOUNT = r'(?P<amount>\d{1,3}(?:\.\d{3})+(?:,\d{1,2})?|\d+(?:[.,]\d{1,2})?)'
_TIME = r'(?P<time>\d{1,2}(?::\d{2}|h\d{2}|h)?)'
_DAY_WORDS = r'depois de amanha|amanha|hoje|ontem|segunda|terca|quarta|quinta|sexta|sabado|domingo'

_CLOCK_IN_TEXT = re.compile(r'\b(?:as\s+)?(\d{1,2}(?::\d{2}|h\d{2}|h))(?![\w:])|\bas\s+(\d{1,2})(?![\w:])')
_PERIOD_IN_TEXT = re.compile(rf'\b({_DAY_WORDS}|semana|mes|ano)\b')
_CATEGORY_IN_TEXT = re.compile(r'\b(?:com|em|no|na|nos|nas|de)\s+(?P<category>[a-z0-9 ]+?)\s*(?:\b(?:hoje|ontem|essa|esta|nessa|nesta|esse|este|nesse|neste|semana|mes|ano)\b|\?|$)')

APPOINTMENT_TITLES = {
    'reuniao': 'Reunião',
    'consulta': 'Consulta',
    'dentista': 'Dentista',
    'medico': 'Médico',
    'aula': 'Aula',
    'entrevista': 'Entrevista',
    'encontro': 'Encontro',
    'evento': 'Evento',
    'call': 'Call',
    'compromisso': None,
}
_APPOINTMENT_WORDS = '|'.join(APPOINTMENT_TITLES.keys())


class GrammarInput:
    """Mensagem original e sua versão normalizada, com posições alinhadas."""

    def __init__(self, message: str):
        self.original = re.sub(r'\s+', ' ', unicodedata.normalize('NFC', message or '')).strip()
        self.folded = fold_text(self.original)
        self._aligned = len(self.original) == len(self.folded)

    def original_group(self, match: 're.Match', group: str) -> Optional[str]:
        if match.group(group) is None:
            return None
        if not self._aligned:
            return match.group(group).strip()
        start, end = match.span(group)
        return self.original[start:end].strip(' .,!?')


class GrammarRule(NamedTuple):
    name: str
    pattern: Pattern
    extractor: Callable[['re.Match', GrammarInput], Dict[str, Any]]


def parse_amount(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    if ',' in raw:
        raw = raw.replace('.', '').replace(',', '.')
    elif re.fullmatch(r'\d{1,3}(?:\.\d{3})+', raw):
        raw = raw.replace('.', '')
    try:
        return float(raw)
    except ValueError:
        return None


def find_clock_token(folded: str) -> Optional[str]:
    match = _CLOCK_IN_TEXT.search(folded)
    if not match:
        return None
    return match.group(1) or match.group(2)


def find_period(folded: str) -> Optional[str]:
    match = _PERIOD_IN_TEXT.search(folded)
    return canonical_period(match.group(1)) if match else None


def extract_appointment_fields(message: str) -> Dict[str, Optional[str]]:
    """Título, dia e horário encontráveis no texto ("reunião amanhã 12h")."""
    source = GrammarInput(message)
    keyword = re.search(rf'\b({_APPOINTMENT_WORDS})\b', source.folded)
    return {
        'title': APPOINTMENT_TITLES.get(keyword.group(1)) if keyword else None,
        'periodo': find_period(source.folded),
        'scheduled_at': find_clock_token(source.folded),
    }


# --- Extratores ---

def _confirm(match, source):
    return {'intent': 'confirm', 'confidence': 0.95}


def _cancel(match, source):
    return {'intent': 'cancel', 'confidence': 0.9}


def _greeting(match, source):
    return {'intent': 'chat', 'confidence': 0.9}


def _time_correction(match, source):
    return {
        'intent': 'update_appointment',
        'domain': 'agenda',
        'scheduled_at': match.group('time'),
        'confidence': 0.8,
    }


def _reschedule(match, source):
    return {
        'intent': 'update_appointment',
        'domain': 'agenda',
        'periodo': canonical_period(match.group('period')),
        'scheduled_at': match.group('time'),
        'confidence': 0.8,
    }


def _cancel_appointment(match, source):
    fields = extract_appointment_fields(source.original)
    return {
        'intent': 'cancel_appointment',
        'domain': 'agenda',
        'title': APPOINTMENT_TITLES.get(match.group('keyword')),
        'periodo': fields['periodo'],
        'confidence': 0.85,
    }


def _money(intent):
    def extractor(match, source):
        return {
            'intent': intent,
            'domain': 'financeiro',
            'amount': parse_amount(match.group('amount')),
            'description': source.original_group(match, 'description'),
            'confidence': 0.9,
        }
    return extractor


def _spending_query(match, source):
    category = _CATEGORY_IN_TEXT.search(match.group('rest') or '')
    return {
        'intent': 'query',
        'domain': 'financeiro',
        'query_type': 'gasto',
        'periodo': find_period(source.folded),
        'category': category.group('category').strip() if category else None,
        'confidence': 0.85,
    }


def _agenda_query(match, source):
    return {
        'intent': 'query',
        'domain': 'agenda',
        'query_type': 'compromissos',
        'periodo': find_period(source.folded),
        'confidence': 0.85,
    }


def _continuation(match, source):
    rest = match.group('rest').strip()
    period = canonical_period(rest)
    guess = {'intent': 'query', 'confidence': 0.75}
    if period:
        guess['periodo'] = period
    else:
        guess['category'] = rest
    return guess


def _report(match, source):
    return {
        'intent': 'report',
        'domain': 'financeiro',
        'periodo': find_period(source.folded),
        'confidence': 0.85,
    }


def _create_appointment(match, source):
    fields = extract_appointment_fields(source.original)
    return {
        'intent': 'create_appointment',
        'domain': 'agenda',
        'title': fields['title'],
        'periodo': fields['periodo'],
        'scheduled_at': fields['scheduled_at'],
        'confidence': 0.85,
    }


def _schedule_details(match, source):
    # Só dia e/ou horário: complementa a tarefa ativa, se houver
    return {
        'intent': 'chat',
        'periodo': find_period(source.folded),
        'scheduled_at': find_clock_token(source.folded),
        'confidence': 0.6,
    }


# Ordem importa: a primeira regra que casa vence.
RULES: List[GrammarRule] = [
    GrammarRule('confirm', re.compile(
        r'^(?:sim|s|ok|okay|confirmo|confirmar|isso|isso mesmo|pode|pode sim|pode salvar|certo|beleza)[.!]*$'
    ), _confirm),
    GrammarRule('cancel', re.compile(
        r'^(?:nao|n|cancela|cancelar|deixa pra la|esquece)[.!]*$'
    ), _cancel),
    GrammarRule('time_correction', re.compile(
        rf'^(?:nao[,.!]?\s*)?(?:(?:na verdade|alias)[,]?\s*)?(?:e\s+|eh\s+|sera\s+|muda\s+(?:pra|para)\s+)?(?:as\s+)?{_TIME}\s*(?:hs|horas?)?[.!]*$'
    ), _time_correction),
    GrammarRule('reschedule', re.compile(
        rf'^(?:nao[,.!]?\s*)?(?:muda|mude|passa|remarca|remarque)\s+(?:(?:ele|ela|isso|o compromisso|a reuniao)\s+)?(?:pra|para)\s+'
        rf'(?:a\s+|o\s+)?(?:proxima\s+|proximo\s+)?(?P<period>{_DAY_WORDS})(?:-feira)?(?:\s+(?:as\s+)?{_TIME})?\s*(?:hs|horas?)?[.!]*$'
    ), _reschedule),
    GrammarRule('cancel_appointment', re.compile(
        rf'\b(?:cancela|cancelar|desmarca|desmarcar|apaga|apagar)\b.*?\b(?P<keyword>{_APPOINTMENT_WORDS})\b'
    ), _cancel_appointment),
    GrammarRule('register_expense', re.compile(
        rf'\b(?:gastei|paguei|comprei|despesa de|despesa)\s+(?:r\$\s*)?{_AMOUNT}\s*(?:reais|real|r\$|rs)?(?:\s+(?:hoje|ontem))?'
        r'(?:\s+(?:no|na|nos|nas|em|com|de|do|da|pra|para)\s+(?P<description>.+?))?[.!]*$'
    ), _money('register_expense')),
    GrammarRule('register_revenue', re.compile(
        rf'\b(?:recebi|ganhei|entrou|entrada de|entrada)\s+(?:r\$\s*)?{_AMOUNT}\s*(?:reais|real|r\$|rs)?(?:\s+(?:hoje|ontem))?'
        r'(?:\s+(?:de|do|da|com|no|na|em|pelo|pela)\s+(?P<description>.+?))?[.!]*$'
    ), _money('register_revenue')),
    GrammarRule('spending_query', re.compile(
        r'\b(?:quanto|qual o total|quais)\b.*?\b(?:gastei|gasto|gastos|paguei|despesas?)\b(?P<rest>.*)$'
    ), _spending_query),
    GrammarRule('agenda_query', re.compile(
        r'\b(?:quais|que|tenho|qual|mostra|mostre)\b.*?\b(?:compromissos?|agenda|reunioes)\b'
    ), _agenda_query),
    GrammarRule('continuation', re.compile(
        r'^e\s+(?:(?:com|em|no|na|de)\s+)?(?P<rest>[a-z0-9 ]+?)\s*\??$'
    ), _continuation),
    GrammarRule('report', re.compile(
        r'\b(?:relatorio|resumo|extrato)\b'
    ), _report),
    GrammarRule('create_appointment', re.compile(
        rf'\b(?:{_APPOINTMENT_WORDS})\b'
    ), _create_appointment),
    GrammarRule('schedule_details', re.compile(
        rf'\b(?:{_DAY_WORDS})\b|\b\d{{1,2}}(?::\d{{2}}|h\d{{2}}|h)(?![\w:])'
    ), _schedule_details),
    GrammarRule('greeting', re.compile(
        r'^(?:oi|ola|bom dia|boa tarde|boa noite|obrigad[oa]|valeu|tudo bem)\b'
    ), _greeting),
]


class HeuristicGrammar:
    """Avalia `RULES` em ordem. Implementa o contrato `infer(message, snapshot)`."""

    def __init__(self, rules: List[GrammarRule] = None):
        self.rules = rules if rules is not None else RULES

    def match(self, message: str) -> Optional[Dict[str, Any]]:
        source = GrammarInput(message)
        for rule in self.rules:
            found = rule.pattern.search(source.folded)
            if found:
                guess = {k: v for k, v in rule.extractor(found, source).items() if v is not None}
                logger.info(f"Regra heurística '{rule.name}' aplicada", intent=guess.get('intent'))
                return guess
        return None

    def infer(self, message: str, context_snapshot: Dict[str, Any] = None) -> Dict[str, Any]:
        guess = self.match(message)
        if guess is None:
            logger.info("Nenhuma regra heurística casou; tratando como conversa")
            return {'intent': 'chat', 'confidence': 0.5}
        return guess

    __call__ = infer
