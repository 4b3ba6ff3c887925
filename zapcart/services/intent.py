from __future__ import annotations

import re

# Letra C seguida de 1 a 6 dígitos, com limite de palavra.
# Números soltos ficam de fora para não confundir com preços e quantidades.
PRODUCT_CODE_PATTERN = re.compile(r"\b[Cc](\d{1,6})\b")


def extract_product_codes(text: str | None) -> list[str]:
    codes: list[str] = []
    seen: set[str] = set()
    for match in PRODUCT_CODE_PATTERN.finditer(text or ""):
        code = f"C{match.group(1)}"
        if code in seen:
            continue
        seen.add(code)
        codes.append(code)
    return codes
