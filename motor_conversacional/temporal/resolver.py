# motor_conversacional/temporal/resolver.py

"""
Resolvedor Temporal: de "amanhã às 15h" para um instante absoluto.

Todo horário dito pelo usuário é interpretado no fuso civil configurado
(`Config.CIVIL_TIMEZONE`, America/Sao_Paulo por padrão), independentemente do
fuso da máquina que executa o código. Nada aqui usa a conversão de hora local
da plataforma: o único "formatador" é `astimezone` sobre um fuso pytz.

Conversão de parede -> UTC (`_compose`):
1.  Sonda o deslocamento UTC do dia pedido formatando um instante fixo (meio-dia)
    no fuso civil. Isso acompanha mudanças de horário de verão.
2.  Subtrai esse deslocamento do horário de parede desejado.
3.  Verifica: reformata o candidato no fuso civil e, se o horário de parede
    não bater, corrige pelo resíduo. No máximo duas passadas de correção,
    o que cobre candidatos que caem sobre uma transição de horário de verão e
    fusos com deslocamento fracionário.

Tokens de horário aceitos: `H:MM`, `HhMM`, `Hh`, `H` (e variantes com "às",
"hs", "horas", "am"/"pm"). Tokens de dia: hoje/amanhã/ontem (ou today/tomorrow/
yesterday), "depois de amanhã" e nomes de dia da semana em português ou inglês.
Tokens inválidos devolvem None; quem chama trata como "dado insuficiente".
"""

import re
from datetime import datetime, timedelta, date
from typing import Callable, Optional, Tuple, Union

import pytz

from motor_conversacional.config import Config
from motor_conversacional.utils.normalize_text import fold_text
from motor_conversacional.utils.observability import log_with_context

logger = log_with_context(component="TemporalResolver")

MAX_CORRECTION_PASSES = 2

_CLOCK_PATTERN = re.compile(
    r'^(?:as?\s+)?(\d{1,2})(?:(?::|h)(\d{2}))?\s*(?:h|hs|horas?)?\s*(am|pm)?$'
)

_DAY_OFFSETS = {
    'today': 0, 'hoje': 0,
    'tomorrow': 1, 'amanha': 1,
    'yesterday': -1, 'ontem': -1,
    'depois de amanha': 2,
}

_WEEKDAYS = {
    'monday': 0, 'segunda': 0,
    'tuesday': 1, 'terca': 1,
    'wednesday': 2, 'quarta': 2,
    'thursday': 3, 'quinta': 3,
    'friday': 4, 'sexta': 4,
    'saturday': 5, 'sabado': 5,
    'sunday': 6, 'domingo': 6,
}

_WEEKDAY_NAMES = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']

# Períodos analíticos (não viram um dia específico)
_RANGE_PERIODS = {
    'week': 'week', 'semana': 'week', 'essa semana': 'week', 'esta semana': 'week',
    'month': 'month', 'mes': 'month', 'esse mes': 'month', 'este mes': 'month',
    'year': 'year', 'ano': 'year', 'esse ano': 'year', 'este ano': 'year',
}

_CANONICAL_DAYS = {0: 'today', 1: 'tomorrow', -1: 'yesterday', 2: 'day_after_tomorrow'}

Instant = Union[datetime, str]


def parse_clock_token(token: Optional[str]) -> Optional[Tuple[int, int]]:
    """Devolve (hora, minuto) ou None se o token não for um horário válido."""
    if token is None:
        return None
    match = _CLOCK_PATTERN.match(fold_text(str(token)))
    if not match:
        return None

    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    meridiem = match.group(3)
    if meridiem:
        if hour < 1 or hour > 12:
            return None
        hour = hour % 12 + (12 if meridiem == 'pm' else 0)

    if hour > 23 or minute > 59:
        return None
    return hour, minute


def format_clock(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def _strip_day_prefix(folded: str) -> str:
    folded = re.sub(r'^(?:n[ao]\s+)?(?:proxim[ao]\s+)?', '', folded)
    return re.sub(r'-feira$', '', folded).strip()


def canonical_period(token: Optional[str]) -> Optional[str]:
    """
    Traduz um período livre para o vocabulário canônico: today, tomorrow,
    yesterday, day_after_tomorrow, week, month, year ou um dia da semana em inglês.
    """
    if not token:
        return None
    folded = _strip_day_prefix(fold_text(token))
    if folded in _RANGE_PERIODS:
        return _RANGE_PERIODS[folded]
    if folded in _DAY_OFFSETS:
        return _CANONICAL_DAYS[_DAY_OFFSETS[folded]]
    if folded == 'day_after_tomorrow':
        return folded
    if folded in _WEEKDAYS:
        return _WEEKDAY_NAMES[_WEEKDAYS[folded]]
    return None


def is_day_period(period: Optional[str]) -> bool:
    """True quando o período aponta para um único dia do calendário."""
    canonical = canonical_period(period)
    return canonical is not None and canonical not in ('week', 'month', 'year')


class TemporalResolver:
    """Funções puras de tempo ancoradas no fuso civil."""

    def __init__(self, timezone_name: str = None, clock: Callable[[], datetime] = None,
                 grace_minutes: int = None):
        self.timezone_name = timezone_name or Config.CIVIL_TIMEZONE
        self.tz = pytz.timezone(self.timezone_name)
        self._clock = clock or (lambda: datetime.now(pytz.utc))
        self.grace_minutes = Config.PAST_TIME_GRACE_MINUTES if grace_minutes is None else grace_minutes

    # --- Conversões básicas ---

    def now(self) -> datetime:
        """Instante atual (UTC); formatado no fuso civil, dá a hora de parede real de lá."""
        current = self._clock()
        if current.tzinfo is None:
            current = pytz.utc.localize(current)
        return current.astimezone(pytz.utc)

    def to_instant(self, value: Optional[Instant]) -> Optional[datetime]:
        """
        Converte um datetime ou string ISO-8601 em instante UTC.
        Valores sem fuso são lidos como hora de parede do fuso civil.
        """
        if value is None or value == '':
            return None
        if isinstance(value, str):
            text = value.strip()
            if text.endswith('Z'):
                text = text[:-1] + '+00:00'
            try:
                value = datetime.fromisoformat(text)
            except ValueError:
                return None
        if value.tzinfo is None:
            value = self.tz.localize(value)
        return value.astimezone(pytz.utc)

    def civil(self, instant: Instant) -> Optional[datetime]:
        converted = self.to_instant(instant)
        return converted.astimezone(self.tz) if converted else None

    def civil_date(self, instant: Instant) -> Optional[str]:
        local = self.civil(instant)
        return local.date().isoformat() if local else None

    def civil_clock(self, instant: Instant) -> Optional[str]:
        local = self.civil(instant)
        return format_clock(local.hour, local.minute) if local else None

    # --- Algoritmo de sondagem de deslocamento ---

    def _utc_offset_on(self, day: date) -> timedelta:
        probe = datetime(day.year, day.month, day.day, 12, 0)
        rendered = pytz.utc.localize(probe).astimezone(self.tz).replace(tzinfo=None)
        return rendered - probe

    def _compose(self, day: date, hour: int, minute: int) -> datetime:
        desired = datetime(day.year, day.month, day.day, hour, minute)
        candidate = pytz.utc.localize(desired - self._utc_offset_on(day))

        for _ in range(MAX_CORRECTION_PASSES):
            rendered = candidate.astimezone(self.tz).replace(tzinfo=None)
            residual = desired - rendered
            if not residual:
                break
            logger.debug("Corrigindo resíduo de deslocamento", day=day.isoformat(),
                         residual_minutes=residual.total_seconds() / 60)
            candidate = candidate + residual

        # Horário inexistente (salto do relógio): a correção oscila entre as
        # duas bordas do buraco. Fica a borda posterior, já no dia pedido.
        residual = desired - candidate.astimezone(self.tz).replace(tzinfo=None)
        if residual > timedelta(0):
            logger.debug("Horário inexistente no fuso civil; avançando além do salto",
                         day=day.isoformat(), residual_minutes=residual.total_seconds() / 60)
            candidate = candidate + residual
        return candidate

    def day_offset(self, period_token: Optional[str], anchor: Optional[Instant] = None) -> Optional[int]:
        """Quantos dias civis separam a âncora do dia pedido (None se não for um dia)."""
        if not period_token:
            return None
        folded = _strip_day_prefix(fold_text(period_token))
        if folded == 'day_after_tomorrow':
            return 2
        if folded in _DAY_OFFSETS:
            return _DAY_OFFSETS[folded]
        if folded in _WEEKDAYS:
            local_anchor = self.civil(anchor or self.now())
            # Próxima ocorrência, usando o dia da semana no fuso civil
            return (_WEEKDAYS[folded] - local_anchor.weekday()) % 7
        return None

    def day_for_period(self, period_token: Optional[str], anchor: Optional[Instant] = None) -> Optional[str]:
        """Data civil ("AAAA-MM-DD") do dia apontado pelo período, ou None."""
        anchor = self.to_instant(anchor) if anchor is not None else self.now()
        offset = self.day_offset(period_token, anchor)
        if offset is None:
            return None
        return (self.civil(anchor).date() + timedelta(days=offset)).isoformat()

    # --- Contrato público ---

    def resolve_relative(self, period_token: Optional[str], clock_token: Optional[str],
                         anchor_instant: Optional[Instant] = None) -> Optional[datetime]:
        """Dia relativo + horário de parede -> instante UTC (ou None)."""
        anchor = self.to_instant(anchor_instant) if anchor_instant is not None else self.now()
        offset = self.day_offset(period_token, anchor)
        clock = parse_clock_token(clock_token)
        if offset is None or clock is None or anchor is None:
            logger.info("Tokens temporais não interpretáveis", period=period_token, clock=clock_token)
            return None

        target_day = self.civil(anchor).date() + timedelta(days=offset)
        return self._compose(target_day, *clock)

    def apply_time_to_same_day(self, base_instant: Optional[Instant], clock_token: Optional[str]) -> Optional[datetime]:
        """Troca só o horário de parede, mantendo o dia civil de `base_instant`."""
        base = self.civil(base_instant) if base_instant is not None else None
        clock = parse_clock_token(clock_token)
        if base is None or clock is None:
            return None
        return self._compose(base.date(), *clock)

    def is_not_in_the_past(self, candidate: Instant, now: Optional[Instant] = None,
                           grace_minutes: Optional[int] = None) -> bool:
        """
        Compara no fuso civil: ano, mês, dia e depois minuto do dia.
        No mesmo dia tolera `grace_minutes` de atraso; entre dias é exato.
        """
        grace = self.grace_minutes if grace_minutes is None else grace_minutes
        local_candidate = self.civil(candidate)
        local_now = self.civil(now if now is not None else self.now())

        candidate_day = (local_candidate.year, local_candidate.month, local_candidate.day)
        now_day = (local_now.year, local_now.month, local_now.day)
        if candidate_day != now_day:
            return candidate_day > now_day

        candidate_minutes = local_candidate.hour * 60 + local_candidate.minute
        now_minutes = local_now.hour * 60 + local_now.minute
        return candidate_minutes >= now_minutes - grace
