from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy.orm import Session

from zapcart.models.enums import MessageType
from zapcart.models.message_template import MessageTemplate

TEMPLATES: dict[MessageType, str] = {
    MessageType.ITEM_ADDED: (
        "🛒 *Item adicionado ao pedido*\n\n"
        "✅ {{produto}}\n"
        "Qtd: *{{quantidade}}*\n"
        "Valor: *{{valor}}*\n\n"
        "Digite *FINALIZAR* para concluir seu pedido."
    ),
    MessageType.OUT_OF_STOCK: (
        "😔 *Produto indisponível*\n\n"
        "O produto {{produto}} está esgotado no momento.\n\n"
        "Avisaremos quando ele voltar! ✨"
    ),
    MessageType.PRODUCT_CANCELED: (
        "❌ *Produto Cancelado*\n\n"
        'O produto "{{produto}}" foi cancelado do seu pedido.\n\n'
        "Qualquer dúvida, entre em contato conosco."
    ),
    MessageType.PAYMENT_CONFIRMED: (
        "🎉 *Pagamento Confirmado - Pedido #{{order_id}}*\n\n"
        "✅ Recebemos seu pagamento!\n"
        "💰 Valor: *{{total}}*\n\n"
        "Seu pedido está sendo preparado para envio.\n\n"
        "Obrigado pela preferência! 💚"
    ),
    MessageType.CHECKOUT_LINK: (
        "Perfeito! 🎉\n\n"
        "Aqui está o seu link exclusivo para finalizar a compra:\n\n"
        "👉 {{checkout_url}}\n\n"
        "Qualquer dúvida estou à disposição! ✨"
    ),
    MessageType.BROADCAST: (
        "🛍️ *{{nome}}* ({{codigo}})\n\n"
        "🎨 Cor: {{cor}}\n"
        "📏 Tamanho: {{tamanho}}\n"
        "💰 Valor: {{valor}}\n\n"
        "📱 Para comprar, digite apenas o código: *{{codigo}}*"
    ),
}

# Aceita {{nome}} e {nome}
_PLACEHOLDER = re.compile(r"\{\{?\s*(\w+)\s*\}?\}")
_OPTIONAL_LINE_FIELDS = ("cor", "tamanho")


def format_currency(value: Decimal | float | int | None) -> str:
    amount = Decimal(str(value or 0)).quantize(Decimal("0.01"))
    formatted = f"{amount:,.2f}"
    return f"R$ {formatted}".replace(",", "X").replace(".", ",").replace("X", ".")


def get_template(db: Session, tenant_id: int, message_type: MessageType) -> str:
    override = (
        db.query(MessageTemplate)
        .filter(
            MessageTemplate.tenant_id == tenant_id,
            MessageTemplate.message_type == message_type.value,
        )
        .first()
    )
    if override and override.content and override.content.strip():
        return override.content
    return TEMPLATES[message_type]


def render_template(template: str, variables: Mapping[str, Any]) -> str:
    """Substitui os placeholders; variáveis ausentes viram texto vazio."""

    def _replace(match: re.Match[str]) -> str:
        value = variables.get(match.group(1).lower())
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_replace, template)


def render_broadcast(template: str, *, code: str, name: str, price: Any, color: str | None, size: str | None) -> str:
    lines = []
    optional = {"cor": (color or "").strip(), "tamanho": (size or "").strip()}
    for line in template.split("\n"):
        fields = {match.group(1).lower() for match in _PLACEHOLDER.finditer(line)}
        if any(field in fields and not optional[field] for field in _OPTIONAL_LINE_FIELDS):
            continue
        lines.append(line)
    message = render_template(
        "\n".join(lines),
        {
            "codigo": code.strip(),
            "nome": name.strip(),
            "valor": format_currency(price),
            **optional,
        },
    )
    return re.sub(r"\n{3,}", "\n\n", message)
