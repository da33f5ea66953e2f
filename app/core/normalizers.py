"""
Funções para normalizar dados de entrada do usuário.
"""
import re
import unicodedata
from typing import Optional


AFFIRMATIVE_ANSWERS = {"sim", "s", "yes", "y", "quero", "claro"}
NEGATIVE_ANSWERS = {"nao", "n", "no", "pular", "nenhum"}
SAME_ADDRESS_KEYWORDS = {"same", "mesmo", "igual", "o mesmo"}
CANCEL_KEYWORDS = {"cancelar", "reiniciar", "/cancelar", "/reiniciar"}


def strip_accents(text: str) -> str:
    """
    Remove acentos de uma string.
    """
    return "".join(
        ch for ch in unicodedata.normalize("NFD", text)
        if unicodedata.category(ch) != "Mn"
    )


def only_digits(raw: str) -> str:
    """
    Remove tudo que não é dígito.

    Exemplos:
        "529.982.247-25" → "52998224725"
        "11.222.333/0001-81" → "11222333000181"
    """
    return re.sub(r"\D", "", raw or "")


def normalize_keyword(raw: str) -> str:
    """
    Minúsculas, sem acentos e sem pontuação nas bordas: "Não!" → "nao".
    """
    text = strip_accents((raw or "").strip().lower())
    return text.strip(" .!?,;")


def parse_yes_no(raw: str) -> Optional[bool]:
    """
    Interpreta respostas do tipo sim/não.

    Retorna True, False ou None se a resposta não for reconhecida.
    """
    answer = normalize_keyword(raw)
    if answer in AFFIRMATIVE_ANSWERS:
        return True
    if answer in NEGATIVE_ANSWERS:
        return False
    return None


def is_same_address_keyword(raw: str) -> bool:
    return normalize_keyword(raw) in SAME_ADDRESS_KEYWORDS


def is_cancel_keyword(raw: str) -> bool:
    return normalize_keyword(raw) in CANCEL_KEYWORDS


def normalize_email(raw: str) -> str:
    return (raw or "").strip().lower()


def mask_email(email: str) -> str:
    """
    Mascara e-mail para logs: "ana.silva@x.com" → "an***@x.com".
    """
    if not email or "@" not in email:
        return "****"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"
