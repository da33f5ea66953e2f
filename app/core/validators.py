"""
Validadores de dados cadastrais.

Todas as funções são puras e totais: recebem qualquer valor e
retornam apenas True/False, nunca levantam exceção.

CPF e CNPJ têm dois modos:
- strict=True: tamanho, dígitos repetidos e dígitos verificadores (módulo 11)
- strict=False: apenas tamanho e dígitos repetidos
O modo é escolhido por implantação (TAX_ID_VALIDATION), nunca misturado.
"""
import re
from typing import Any

from .normalizers import only_digits

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

CNPJ_FIRST_WEIGHTS = [5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]
CNPJ_SECOND_WEIGHTS = [6] + CNPJ_FIRST_WEIGHTS


def valid_email(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return bool(EMAIL_PATTERN.match(value.strip()))


def _cpf_check_digit(digits: str) -> int:
    # Pesos decrescentes a partir de len+1: 10..2 para o primeiro dígito, 11..2 para o segundo
    weight = len(digits) + 1
    total = sum(int(d) * (weight - i) for i, d in enumerate(digits))
    rest = (total * 10) % 11
    return 0 if rest in (10, 11) else rest


def _cnpj_check_digit(digits: str, weights) -> int:
    total = sum(int(d) * w for d, w in zip(digits, weights))
    rest = total % 11
    return 0 if rest < 2 else 11 - rest


def valid_cpf(value: Any, strict: bool = True) -> bool:
    if not isinstance(value, str):
        return False
    digits = only_digits(value)
    if len(digits) != 11 or len(set(digits)) == 1:
        return False
    if not strict:
        return True
    if _cpf_check_digit(digits[:9]) != int(digits[9]):
        return False
    return _cpf_check_digit(digits[:10]) == int(digits[10])


def valid_cnpj(value: Any, strict: bool = True) -> bool:
    if not isinstance(value, str):
        return False
    digits = only_digits(value)
    if len(digits) != 14 or len(set(digits)) == 1:
        return False
    if not strict:
        return True
    if _cnpj_check_digit(digits[:12], CNPJ_FIRST_WEIGHTS) != int(digits[12]):
        return False
    return _cnpj_check_digit(digits[:13], CNPJ_SECOND_WEIGHTS) == int(digits[13])


def valid_password(value: Any, min_length: int = 6) -> bool:
    return isinstance(value, str) and len(value) >= min_length
