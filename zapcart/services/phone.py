from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")


class InvalidPhoneError(ValueError):
    pass


def normalize_phone(raw: str | None) -> str:
    """Telefone no formato nacional canônico: DDD + 9 dígitos, sem o 55."""
    digits = _NON_DIGITS.sub("", raw or "")
    if digits.startswith("55") and len(digits) > 11:
        digits = digits[2:]
    if len(digits) < 10:
        raise InvalidPhoneError(f"Telefone inválido: {raw!r}")
    if len(digits) == 10:
        digits = f"{digits[:2]}9{digits[2:]}"
    return digits


def format_phone_for_sending(phone: str) -> str:
    digits = _NON_DIGITS.sub("", phone or "").lstrip("0")
    if not digits.startswith("55"):
        digits = f"55{digits}"
    return digits
