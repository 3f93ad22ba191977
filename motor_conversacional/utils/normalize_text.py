# motor_conversacional/utils/normalize_text.py

"""
Normalização de texto para comparações semânticas.

Duas variantes:
- `fold_text`: minúsculas, sem acentos e com espaços colapsados. É a igualdade
  "frouxa" usada para comparar títulos, locais e datas de compromissos.
- `normalize_text`: além do `fold_text`, remove preposições irrelevantes e
  aplica um plural simples, para casar termos de categoria ("mercados" e
  "do mercado" viram "mercado").
"""

import re
import unicodedata
from typing import Optional

_STOPWORDS = {'de', 'da', 'do', 'das', 'dos', 'para', 'pra'}


def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize('NFD', value)
    return ''.join(ch for ch in decomposed if not unicodedata.combining(ch))


def fold_text(value: Optional[str]) -> str:
    if not value:
        return ''
    folded = strip_accents(str(value).lower())
    return re.sub(r'\s+', ' ', folded).strip()


def normalize_text(value: Optional[str]) -> str:
    tokens = []
    for token in fold_text(value).split(' '):
        if not token or token in _STOPWORDS:
            continue
        # plural simples: "peliculas" -> "pelicula", mas "ass" fica
        if len(token) > 3 and token.endswith('s') and not token.endswith('ss'):
            token = token[:-1]
        tokens.append(token)
    return ' '.join(tokens)
