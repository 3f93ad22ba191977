# motor_conversacional/services/category_normalizer.py

"""
Normalizador de categorias (colaborador `normalize` padrão).

O modelo de linguagem devolve termos livres ("mercado", "gasolina"). Este módulo
os mapeia para o par categoria/subcategoria usado pelo livro-caixa. A tabela é
um dado de produto e pode ser trocada injetando outro colaborador em
`create_engine(normalize=...)`.
"""

from typing import Dict, Optional

from motor_conversacional.utils.normalize_text import normalize_text, fold_text
from motor_conversacional.utils.observability import log_with_context

logger = log_with_context(component="CategoryNormalizer")

CATEGORY_MAPPINGS: Dict[str, Dict[str, Optional[str]]] = {
    # Alimentação
    'mercado': {'category': 'Alimentação', 'subcategory': 'supermercado'},
    'supermercado': {'category': 'Alimentação', 'subcategory': 'supermercado'},
    'alimentacao': {'category': 'Alimentação', 'subcategory': None},
    'comida': {'category': 'Alimentação', 'subcategory': None},
    'restaurante': {'category': 'Alimentação', 'subcategory': 'restaurante'},
    'lanchonete': {'category': 'Alimentação', 'subcategory': 'lanchonete'},
    'delivery': {'category': 'Alimentação', 'subcategory': 'delivery'},
    'ifood': {'category': 'Alimentação', 'subcategory': 'delivery'},
    'padaria': {'category': 'Alimentação', 'subcategory': 'padaria'},
    'feira': {'category': 'Alimentação', 'subcategory': 'feira'},
    # Transporte
    'combustivel': {'category': 'Transporte', 'subcategory': 'combustível'},
    'gasolina': {'category': 'Transporte', 'subcategory': 'combustível'},
    'posto': {'category': 'Transporte', 'subcategory': 'combustível'},
    'transporte': {'category': 'Transporte', 'subcategory': None},
    'uber': {'category': 'Transporte', 'subcategory': 'aplicativos (Uber/99)'},
    '99': {'category': 'Transporte', 'subcategory': 'aplicativos (Uber/99)'},
    # Financeiro
    'cartao': {'category': 'Financeiro e Obrigações', 'subcategory': 'cartão de crédito'},
    'credito': {'category': 'Financeiro e Obrigações', 'subcategory': 'cartão de crédito'},
    'fatura': {'category': 'Financeiro e Obrigações', 'subcategory': 'cartão de crédito'},
    # Moradia e saúde
    'aluguel': {'category': 'Moradia', 'subcategory': 'aluguel'},
    'moradia': {'category': 'Moradia', 'subcategory': None},
    'farmacia': {'category': 'Saúde', 'subcategory': 'farmácia'},
    'remedio': {'category': 'Saúde', 'subcategory': 'farmácia'},
    'saude': {'category': 'Saúde', 'subcategory': None},
    'educacao': {'category': 'Educação', 'subcategory': None},
    'lazer': {'category': 'Lazer e Entretenimento', 'subcategory': None},
    'compra': {'category': 'Compras Pessoais', 'subcategory': None},
    # Receitas
    'salario': {'category': 'Trabalho e Negócios', 'subcategory': 'salário'},
    'freela': {'category': 'Trabalho e Negócios', 'subcategory': 'serviços profissionais'},
}

VALID_CATEGORIES = [
    'Alimentação', 'Moradia', 'Saúde', 'Transporte', 'Educação',
    'Lazer e Entretenimento', 'Compras Pessoais', 'Assinaturas e Serviços',
    'Financeiro e Obrigações', 'Impostos e Taxas', 'Pets',
    'Doações e Presentes', 'Trabalho e Negócios', 'Outros',
]

# Padrão de receita não reconhecida. Decisão de produto, ver DESIGN.md.
DEFAULT_REVENUE_CATEGORY = {'category': 'Trabalho e Negócios', 'subcategory': 'serviços profissionais'}
DEFAULT_EXPENSE_CATEGORY = {'category': 'Outros', 'subcategory': None}


def normalize_category(free_text: Optional[str]) -> Dict[str, Optional[str]]:
    """
    Resolve categoria/subcategoria a partir de um termo livre.

    Procura primeiro o termo inteiro, depois cada palavra ("gasolina do carro"
    casa com "gasolina"). Um termo que já é categoria válida é devolvido como
    está. Sem correspondência, devolve ambos como None.
    """
    if not free_text:
        return {'category': None, 'subcategory': None}

    normalized = normalize_text(free_text)
    mapping = CATEGORY_MAPPINGS.get(normalized)
    if mapping is None:
        mapping = next(
            (CATEGORY_MAPPINGS[token] for token in normalized.split(' ') if token in CATEGORY_MAPPINGS),
            None
        )
    if mapping is not None:
        return dict(mapping)

    folded = fold_text(free_text)
    for category in VALID_CATEGORIES:
        if fold_text(category) == folded:
            return {'category': category, 'subcategory': None}

    logger.debug("Termo sem categoria conhecida", term=free_text)
    return {'category': None, 'subcategory': None}


def default_category_for(intent: str) -> Dict[str, Optional[str]]:
    if intent == 'register_revenue':
        return dict(DEFAULT_REVENUE_CATEGORY)
    return dict(DEFAULT_EXPENSE_CATEGORY)
