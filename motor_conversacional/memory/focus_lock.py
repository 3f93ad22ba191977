# motor_conversacional/memory/focus_lock.py

"""
Trava de Referência (foco da conversa).

Acompanha "de qual compromisso estamos falando". Cada menção compatível com o
alvo atual acumula confiança (+0.2, teto 0.95); uma menção incompatível troca o
alvo por um novo (menções=1, confiança=0.5). Com 2 menções e confiança >= 0.7 o
alvo fica "travado" e o sistema para de perguntar "qual deles?". O alvo expira
`Config.FOCUS_LOCK_TTL` (5 min) depois da última menção; a expiração é
verificada na leitura.

Também pontua candidatos vindos da agenda externa quando o usuário se refere a um
compromisso sem identificá-lo. Os pesos da pontuação são decisão de produto:

    título idêntico           +5     título parcial          +2
    local na descrição        +3     local no título         +2
    mesmo dia                 +5     a um dia de distância   +2

Só candidatos com pontuação >= 2 são devolvidos, por pontuação e depois pelo
horário mais recente.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from motor_conversacional.config import Config
from motor_conversacional.errors import StaleReference, CollaboratorFailure
from motor_conversacional.models.semantic_state import (
    FocusTarget, CandidateMatch, ReferenceCriteria, ConversationOwner
)
from motor_conversacional.utils.normalize_text import fold_text
from motor_conversacional.utils.observability import log_with_context

logger = log_with_context(component="FocusLock")

CONFIDENCE_STEP = 0.2
CONFIDENCE_CAP = 0.95
INITIAL_CONFIDENCE = 0.5
MIN_CANDIDATE_SCORE = 2

_MENTION_FIELDS = ('target_id', 'title', 'location', 'date')


def _matches(target: FocusTarget, mention: Dict[str, Optional[str]]) -> bool:
    # Campo ausente em qualquer lado não desqualifica
    for field, value in mention.items():
        existing = getattr(target, field)
        if value is None or existing is None:
            continue
        if fold_text(existing) != fold_text(value):
            return False
    return True


def score_candidate(candidate: Mapping[str, Any], criteria: ReferenceCriteria, resolver) -> int:
    score = 0
    title = fold_text(candidate.get('title'))
    description = fold_text(candidate.get('description'))

    wanted_title = fold_text(criteria.title)
    if wanted_title and title:
        if title == wanted_title:
            score += 5
        elif wanted_title in title or title in wanted_title:
            score += 2

    wanted_location = fold_text(criteria.location)
    if wanted_location:
        if wanted_location in description:
            score += 3
        elif wanted_location in title:
            score += 2

    if criteria.date and candidate.get('scheduled_at'):
        candidate_day = resolver.civil_date(candidate['scheduled_at'])
        if candidate_day:
            distance = abs((datetime.fromisoformat(candidate_day) - datetime.fromisoformat(criteria.date)).days)
            if distance == 0:
                score += 5
            elif distance == 1:
                score += 2

    return score


class FocusLock:

    def __init__(self, store, resolver, find_upcoming: Callable = None, ttl=None):
        self._store = store
        self._resolver = resolver
        self._find_upcoming = find_upcoming
        self.ttl = ttl or Config.FOCUS_LOCK_TTL

    def _ensure_fresh(self, target: FocusTarget, now: datetime) -> FocusTarget:
        if now - target.last_mention > self.ttl:
            raise StaleReference(f"Foco '{target.type}' expirado em {target.conversation_id}")
        return target

    def _fresh_target(self, bundle, target_type: str) -> Optional[FocusTarget]:
        target = bundle.focus.get(target_type)
        if target is None:
            return None
        try:
            return self._ensure_fresh(target, self._resolver.now())
        except StaleReference as e:
            logger.debug("Foco expirado descartado", conversation_id=bundle.conversation_id,
                         type=target_type, error_code=e.error_code)
            del bundle.focus[target_type]
            return None

    def register_mention(self, conversation_id: str, target_type: str, target_id: str = None,
                         title: str = None, location: str = None, date: str = None) -> FocusTarget:
        mention = {'target_id': target_id, 'title': title, 'location': location, 'date': date}
        now = self._resolver.now()

        with self._store.session(conversation_id) as bundle:
            current = self._fresh_target(bundle, target_type)
            if current is not None and _matches(current, mention):
                current.mentions += 1
                current.last_mention = now
                current.confidence = round(min(current.confidence + CONFIDENCE_STEP, CONFIDENCE_CAP), 2)
                for field in _MENTION_FIELDS:
                    if mention[field] is not None:
                        setattr(current, field, mention[field])
                target = current
            else:
                target = FocusTarget(
                    conversation_id=conversation_id,
                    type=target_type,
                    mentions=1,
                    last_mention=now,
                    confidence=INITIAL_CONFIDENCE,
                    **mention,
                )
                bundle.focus[target_type] = target

        logger.info("Menção registrada", conversation_id=conversation_id, type=target_type,
                    mentions=target.mentions, confidence=target.confidence)
        return target.model_copy()

    def has_lock(self, conversation_id: str, target_type: str) -> Optional[FocusTarget]:
        with self._store.session(conversation_id) as bundle:
            target = self._fresh_target(bundle, target_type)
            if target is None or not target.is_locked:
                return None
            return target.model_copy()

    def clear(self, conversation_id: str, target_type: str) -> None:
        with self._store.session(conversation_id) as bundle:
            bundle.focus.pop(target_type, None)

    def clear_all(self, conversation_id: str) -> None:
        with self._store.session(conversation_id) as bundle:
            bundle.focus = {}

    def find_matching_candidates(self, owner: ConversationOwner, criteria: ReferenceCriteria) -> List[CandidateMatch]:
        """Consulta a agenda externa e devolve os candidatos pontuados (>= 2)."""
        if self._find_upcoming is None:
            return []

        try:
            upcoming = self._find_upcoming(owner, self._resolver.now()) or []
        except Exception as e:
            logger.exception("Falha ao consultar a agenda externa", conversation_id=owner.conversation_id)
            raise CollaboratorFailure(f"find_upcoming falhou: {e}") from e

        matches = []
        for candidate in upcoming:
            score = score_candidate(candidate, criteria, self._resolver)
            if score < MIN_CANDIDATE_SCORE:
                continue
            scheduled_at = candidate.get('scheduled_at')
            if isinstance(scheduled_at, datetime):
                scheduled_at = scheduled_at.isoformat()
            matches.append(CandidateMatch(
                id=str(candidate['id']),
                title=candidate.get('title'),
                scheduled_at=scheduled_at,
                description=candidate.get('description'),
                score=score,
            ))

        def _recency(match: CandidateMatch) -> float:
            instant = self._resolver.to_instant(match.scheduled_at)
            return instant.timestamp() if instant else float('-inf')

        matches.sort(key=lambda m: (m.score, _recency(m)), reverse=True)
        logger.info("Candidatos pontuados", conversation_id=owner.conversation_id,
                    total=len(upcoming), matched=len(matches))
        return matches

    def upcoming(self, owner: ConversationOwner, limit: int = 3) -> List[CandidateMatch]:
        """Próximos compromissos sem pontuação, para listar numa pergunta de esclarecimento."""
        if self._find_upcoming is None:
            return []
        try:
            upcoming = self._find_upcoming(owner, self._resolver.now()) or []
        except Exception:
            logger.exception("Falha ao listar a agenda externa", conversation_id=owner.conversation_id)
            return []

        listed = []
        for item in upcoming[:limit]:
            local = self._resolver.civil(item.get('scheduled_at'))
            listed.append(CandidateMatch(
                id=str(item['id']),
                title=item.get('title'),
                scheduled_at=local.strftime('%d/%m %H:%M') if local else None,
                description=item.get('description'),
            ))
        return listed

    def snapshot(self, conversation_id: str) -> Dict[str, Any]:
        snapshot = {}
        with self._store.session(conversation_id) as bundle:
            for target_type in list(bundle.focus.keys()):
                target = self._fresh_target(bundle, target_type)
                if target is None:
                    continue
                snapshot[target_type] = {
                    "target_id": target.target_id,
                    "title": target.title,
                    "location": target.location,
                    "date": target.date,
                    "mentions": target.mentions,
                    "confidence": target.confidence,
                    "locked": target.is_locked,
                }
        return snapshot
