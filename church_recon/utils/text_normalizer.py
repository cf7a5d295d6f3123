"""
Text normalization for bank descriptions and contributor names.

Two different products come out of this module:

- `normalize` builds the comparison key used for matching and for the
  learned memory. It is a projection: applying it twice changes nothing.
- `clean_description` builds the human-readable label. It keeps case and
  accents and only strips bank noise and technical garbage.
"""

import re
import unicodedata
from typing import Iterable, List, Optional, Sequence

import structlog

logger = structlog.get_logger()

_NON_ALNUM = re.compile(r"[^0-9a-z]+")

# Bank boilerplate removed from display labels
BANK_NOISE = [
    r"\bPIX\b", r"\bTED\b", r"\bDOC\b", r"\bTRANSF\b", r"\bTRANSFERENCIA\b",
    r"\bRECEBIDO\b", r"\bENVIADO\b", r"\bPAGTO\b", r"\bPAGAMENTO\b",
    r"\bCONTA\b", r"\bCORRENTE\b", r"\bPOUPANCA\b", r"\bBANCO\b",
    r"\bCOMPROVANTE\b", r"\bAUTENTICACAO\b", r"\bSTR\b", r"\bPGTO\b",
    r"\bCREDITO\b", r"\bDEBITO\b", r"\bEXTRATO\b", r"\bFAVORECIDO\b",
    r"\bLIQUIDACAO\b", r"\bESTORNO\b", r"\bLANCTO\b",
    r"\bRECEB\.?\s*OUTRA\s*IF\b",
]
_BANK_NOISE = [re.compile(p, re.IGNORECASE) for p in BANK_NOISE]

# Summary lines: never a movement
BALANCE_KEYWORDS = [
    "SALDO", "SALDO ANTERIOR", "SDO", "TOTAL", "SUBTOTAL", "SOMATORIO",
    "RESUMO", "FECHAMENTO", "ACUMULADO", "DISPONIVEL",
]
# Balance lines plus bank-generated movements, which stay transactions
CONTROL_KEYWORDS = BALANCE_KEYWORDS + [
    "APLICACAO", "RESGATE", "RENDIMENTO", "TARIFAS", "IOF", "JUROS", "IRRF",
]


def _keyword_pattern(keywords: Sequence[str]) -> "re.Pattern":
    return re.compile(r"\b(" + "|".join(sorted(keywords, key=len, reverse=True)) + r")\b")


_BALANCE_ROW = _keyword_pattern(BALANCE_KEYWORDS)
_CONTROL_ROW = _keyword_pattern(CONTROL_KEYWORDS)

# Tokens that look like noise but carry meaning ("JOAO II", "LOJA 7")
_ROMAN_NUMERALS = re.compile(r"\b(I|II|III|IV|V|VI|VII|VIII|IX|X)\b")
_SEMANTIC_TERMS = re.compile(
    r"\b(\d+\s*(HORAS|ESTRELAS|SEDE|LOJA|FILIAL|KM|AV|RUA|QD|LT|BL))\b",
    re.IGNORECASE,
)

_TECHNICAL_GARBAGE = [
    re.compile(r"\*+[\d.]+\*+"),                        # masked document ***981201**
    re.compile(r"\d{3}\.\d{3}\.\d{3}-\d{2}"),           # CPF
    re.compile(r"\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}"),     # CNPJ
    re.compile(r"\b[A-Z0-9]{15,}\b"),                   # hashes, end-to-end ids
    re.compile(r"[0-9]{5,}"),                           # long numeric ids
]
_DISPLAY_PUNCTUATION = re.compile(r"[*\-_.;:/\\|()<>]")

# Contribution categories, checked before bank movement types
CHURCH_TERMS = [
    "DIZIMO", "OFERTA", "MISSAO", "MISSOES", "VOTO", "CAMPANHA",
    "PRIMICIA", "DOACAO", "BENEFICENTE",
]

BANK_TYPES = {
    "PIX": "PIX",
    "TED": "TED",
    "DOC": "DOC",
    "TEV": "TRANSF.",
    "TRANSFERENCIA": "TRANSF.",
    "TRANSF": "TRANSF.",
    "DEPOSITO": "DEPÓSITO",
    "DEP": "DEPÓSITO",
    "BOLETO": "BOLETO",
    "COBRANCA": "BOLETO",
    "TARIFA": "TARIFA",
    "TAXA": "TARIFA",
    "CESTA": "TARIFA",
    "RESGATE": "RESGATE",
    "APLICACAO": "APLIC.",
    "PAGAMENTO": "PAGTO",
    "PAGTO": "PAGTO",
    "SAQUE": "SAQUE",
    "CARTAO": "CARTÃO",
    "DB VIS": "CARTÃO",
    "ELO": "CARTÃO",
    "MASTERCARD": "CARTÃO",
    "VISA": "CARTÃO",
    "CHEQUE": "CHEQUE",
}

DEFAULT_CONTRIBUTION_TYPE = "OUTROS"


def strip_accents(text: str) -> str:
    """Decompose and drop combining marks."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _tokens(text: str) -> List[str]:
    return _NON_ALNUM.sub(" ", strip_accents(text).lower()).split()


def _keyword_token_lists(ignored_keywords: Iterable[str]) -> List[List[str]]:
    token_lists = [_tokens(k) for k in ignored_keywords if k]
    token_lists = [t for t in token_lists if t]
    # Longest phrases first so "pix recebido" wins over "pix"
    token_lists.sort(key=len, reverse=True)
    return token_lists


def _remove_phrases(tokens: List[str], phrases: List[List[str]]) -> List[str]:
    out: List[str] = []
    i = 0
    while i < len(tokens):
        for phrase in phrases:
            n = len(phrase)
            if tokens[i:i + n] == phrase:
                i += n
                break
        else:
            out.append(tokens[i])
            i += 1
    return out


def normalize(text: Optional[str], ignored_keywords: Iterable[str] = ()) -> str:
    """
    Build the comparison key for a description or name.

    Lower-cases, strips diacritics, turns punctuation into spaces, collapses
    whitespace and removes every ignored keyword as a whole token or whole
    token sequence. Removal repeats until nothing changes, so the result is
    stable under a second application.

    Args:
        text: Raw description or name
        ignored_keywords: Words/phrases to drop (any case, any accents)

    Returns:
        Normalized key, possibly empty
    """
    if not text:
        return ""

    tokens = _tokens(text)
    phrases = _keyword_token_lists(ignored_keywords)
    if phrases:
        while True:
            reduced = _remove_phrases(tokens, phrases)
            if reduced == tokens:
                break
            tokens = reduced

    return " ".join(tokens)


def _keyword_pattern(keyword: str) -> Optional[re.Pattern]:
    parts = keyword.strip().split()
    if not parts:
        return None
    # "RECEB OUTRA IF" also matches "RECEB.OUTRA.IF"
    body = r"[\s._-]+".join(re.escape(p) for p in parts)
    return re.compile(rf"\b{body}\b", re.IGNORECASE)


def clean_description(raw: Optional[str], keywords: Sequence[str] = ()) -> str:
    """
    Strip bank noise from a description while keeping the readable name.

    Case and accents are preserved. If cleaning removes (almost) everything,
    the trimmed original is returned so no row loses its label.
    """
    if not raw:
        return ""

    cleaned = raw
    protected: List[str] = []

    def _protect(pattern: re.Pattern, prefix: str) -> None:
        nonlocal cleaned

        def _swap(match):
            protected.append(match.group(0))
            return f" __{prefix}{len(protected) - 1}__ "

        cleaned = pattern.sub(_swap, cleaned)

    _protect(_SEMANTIC_TERMS, "SEM")
    _protect(_ROMAN_NUMERALS, "ROM")

    for pattern in _BANK_NOISE:
        cleaned = pattern.sub(" ", cleaned)

    for keyword in sorted(keywords, key=len, reverse=True):
        pattern = _keyword_pattern(keyword) if keyword else None
        if pattern is not None:
            cleaned = pattern.sub(" ", cleaned)

    for pattern in _TECHNICAL_GARBAGE:
        cleaned = pattern.sub(" ", cleaned)

    # Placeholders contain underscores, hide them from the punctuation pass
    cleaned = re.sub(
        r"__(SEM|ROM)(\d+)__",
        lambda m: f"\x00{m.group(1)}{m.group(2)}\x00",
        cleaned,
    )
    cleaned = _DISPLAY_PUNCTUATION.sub(" ", cleaned)
    cleaned = " ".join(t for t in cleaned.split() if not t.isdigit())

    cleaned = re.sub(
        r"\x00(?:SEM|ROM)(\d+)\x00",
        lambda m: protected[int(m.group(1))],
        cleaned,
    )
    result = " ".join(cleaned.split())

    if len(result) < 2 and len(raw.strip()) >= 2:
        return raw.strip()
    return result


def _keyword_search(pattern: "re.Pattern", text: Optional[str]) -> bool:
    if not text:
        return False
    upper = " ".join(_tokens(text)).upper()
    return pattern.search(upper) is not None


def is_balance_row(text: Optional[str]) -> bool:
    """True for balance/total lines that are not transactions."""
    return _keyword_search(_BALANCE_ROW, text)


def is_control_row(text: Optional[str]) -> bool:
    """
    True for lines the bank generates itself: balances, totals, fees,
    interest, investments and redemptions. Only balance lines are dropped
    during extraction; the rest are flagged on the transaction.
    """
    return _keyword_search(_CONTROL_ROW, text)


def contribution_terms(keywords: Optional[Iterable[str]] = None) -> List[str]:
    """Caller keywords as upper-case, accent-free terms; CHURCH_TERMS when None."""
    if keywords is None:
        return list(CHURCH_TERMS)
    return [strip_accents(k).upper().strip() for k in keywords if k and k.strip()]


def resolve_contribution_type(
    description: Optional[str],
    contribution_keywords: Optional[Iterable[str]] = None,
) -> Optional[str]:
    """
    Classify a description by keyword.

    Contribution keywords (DIZIMO, OFERTA, ... unless the caller supplies
    its own) take precedence over bank movement types (PIX, TED, ...).
    Returns OUTROS when nothing applies and None for an empty description.
    """
    if not description:
        return None
    upper = " ".join(_tokens(description)).upper()
    words = f" {upper} "

    for term in contribution_terms(contribution_keywords):
        if term in upper:
            return term

    for key, label in BANK_TYPES.items():
        if f" {key} " in words:
            return label

    if re.search(r"\bPA?G", upper):
        return "PAGTO"

    return DEFAULT_CONTRIBUTION_TYPE
