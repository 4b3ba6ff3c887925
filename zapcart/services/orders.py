from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from zapcart.core.config import ITEM_DUPLICATE_WINDOW_SECONDS
from zapcart.core.timeutils import as_naive_utc, event_date_for, utcnow
from zapcart.models.cart import Cart
from zapcart.models.cart_item import CartItem
from zapcart.models.customer import Customer
from zapcart.models.enums import CartStatus, EventType
from zapcart.models.order import Order
from zapcart.models.product import Product
from zapcart.services.deduplicator import ProductDedupCache
from zapcart.services.inventory import ReserveOutcome, decrement_stock, reserve

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ItemStatus(str, Enum):
    ADDED = "added"
    INCREMENTED = "incremented"
    DUPLICATE_IGNORED = "duplicate_ignored"
    SKIPPED = "skipped"
    FAILED = "failed"


class ItemError(str, Enum):
    PRODUCT_NOT_FOUND = "product_not_found"
    OUT_OF_STOCK = "out_of_stock"
    INSUFFICIENT_STOCK = "insufficient_stock"
    CART_CREATION_ERROR = "cart_creation_error"
    CART_ITEM_ERROR = "cart_item_error"


class CartCreationError(Exception):
    pass


class CartItemError(Exception):
    pass


@dataclass
class CodeResult:
    code: str
    status: ItemStatus
    error: ItemError | None = None
    reason: str | None = None
    product_id: int | None = None
    product_name: str | None = None
    cart_id: int | None = None
    order_id: int | None = None
    cart_item_id: int | None = None
    quantity: int | None = None
    unit_price: Decimal | None = None
    stock_after: int | None = None
    notified: bool = False

    @property
    def applied(self) -> bool:
        return self.status in {ItemStatus.ADDED, ItemStatus.INCREMENTED}

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["error"] = self.error.value if self.error else None
        data["unit_price"] = str(self.unit_price) if self.unit_price is not None else None
        return {key: value for key, value in data.items() if value is not None}


def insert_or_refetch(db: Session, build: Callable[[], T], refetch: Callable[[], T | None]) -> tuple[T | None, bool]:
    """Insere e confirma; em violação de unicidade relê a linha concorrente.

    Retorna ``(linha, criada)``. Uma única releitura, sem laço.
    """
    row = build()
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return refetch(), False
    db.refresh(row)
    return row, True


def active_cart_key(tenant_id: int, phone: str, event_type: EventType, event_date: date) -> str:
    return f"{tenant_id}:{phone}:{event_type.value}:{event_date.isoformat()}"


def resolve_product(db: Session, tenant_id: int, code: str) -> Product | None:
    """Código exato (sem diferenciar maiúsculas), depois variantes tolerantes."""
    normalized = code.strip().upper()
    base_query = db.query(Product).filter(Product.tenant_id == tenant_id, Product.is_active.is_(True))

    product = base_query.filter(func.upper(Product.code) == normalized).first()
    if product:
        return product

    product = base_query.filter(func.upper(func.trim(Product.code)) == normalized).first()
    if product:
        return product

    digits = normalized[1:] if normalized.startswith("C") else normalized
    variants = {digits, f"C{digits}"}
    return (
        base_query.filter(func.upper(func.trim(Product.code)).in_(variants))
        .order_by(Product.id.asc())
        .first()
    )


def ensure_customer(db: Session, *, tenant_id: int, phone: str, name: str | None = None) -> Customer:
    def _fetch() -> Customer | None:
        return db.query(Customer).filter(Customer.tenant_id == tenant_id, Customer.phone == phone).first()

    customer = _fetch()
    if customer:
        if name and not customer.name:
            customer.name = name
            db.commit()
        return customer

    customer, created = insert_or_refetch(
        db,
        lambda: Customer(tenant_id=tenant_id, phone=phone, name=name),
        _fetch,
    )
    if customer is None:
        raise CartCreationError("Não foi possível registrar o cliente")
    if created:
        logger.info("Cliente criado", extra={"tenant_id": tenant_id, "phone": phone})
    return customer


def _release_cart_key(db: Session, cart: Cart) -> None:
    db.query(Cart).filter(Cart.id == cart.id, Cart.active_key == cart.active_key).update(
        {Cart.active_key: None},
        synchronize_session=False,
    )
    db.commit()
    db.refresh(cart)


def _cart_is_usable(db: Session, cart: Cart) -> bool:
    if cart.status != CartStatus.OPEN.value:
        return False
    linked = db.query(Order).filter(Order.cart_id == cart.id).first()
    return linked is None or linked.is_open


def resolve_cart(
    db: Session,
    *,
    tenant_id: int,
    phone: str,
    event_type: EventType,
    event_date: date,
    group_name: str | None = None,
) -> Cart:
    key = active_cart_key(tenant_id, phone, event_type, event_date)

    def _fetch() -> Cart | None:
        return db.query(Cart).filter(Cart.active_key == key).first()

    for _ in range(2):
        cart = _fetch()
        if cart is not None:
            if _cart_is_usable(db, cart):
                return cart
            # Carrinho encerrado ou ligado a pedido pago/cancelado: libera o bucket
            logger.info(
                "Carrinho ligado a pedido encerrado, criando novo",
                extra={"tenant_id": tenant_id, "phone": phone, "cart_id": cart.id},
            )
            _release_cart_key(db, cart)

        cart, created = insert_or_refetch(
            db,
            lambda: Cart(
                tenant_id=tenant_id,
                customer_phone=phone,
                event_type=event_type.value,
                event_date=event_date,
                status=CartStatus.OPEN.value,
                active_key=key,
                whatsapp_group_name=group_name,
            ),
            _fetch,
        )
        if created:
            logger.info("Carrinho criado", extra={"tenant_id": tenant_id, "phone": phone, "cart_id": cart.id})
            return cart
        if cart is not None and _cart_is_usable(db, cart):
            return cart

    raise CartCreationError(f"Não foi possível obter carrinho para {key}")


def resolve_order(
    db: Session,
    *,
    cart: Cart,
    tenant_id: int,
    phone: str,
    event_type: EventType,
    event_date: date,
) -> Order:
    def _fetch_by_cart() -> Order | None:
        return db.query(Order).filter(Order.cart_id == cart.id).first()

    # O vínculo com o carrinho tem prioridade sobre a data: um carrinho que
    # atravessa a virada do dia continua acumulando no mesmo pedido.
    order = _fetch_by_cart()
    if order is not None:
        if not order.is_open:
            raise CartCreationError(f"Carrinho {cart.id} ligado a pedido encerrado")
        return order

    orphan = (
        db.query(Order)
        .filter(
            Order.tenant_id == tenant_id,
            Order.customer_phone == phone,
            Order.event_type == event_type.value,
            Order.event_date == event_date,
            Order.is_paid.is_(False),
            Order.is_cancelled.is_(False),
            Order.cart_id.is_(None),
        )
        .order_by(Order.id.asc())
        .first()
    )
    if orphan is not None:
        try:
            linked = (
                db.query(Order)
                .filter(Order.id == orphan.id, Order.cart_id.is_(None))
                .update({Order.cart_id: cart.id}, synchronize_session=False)
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            linked = 0
        if linked:
            db.refresh(orphan)
            return orphan

    order, created = insert_or_refetch(
        db,
        lambda: Order(
            tenant_id=tenant_id,
            cart_id=cart.id,
            customer_phone=phone,
            event_type=event_type.value,
            event_date=event_date,
            is_paid=False,
            is_cancelled=False,
            total_amount=Decimal("0"),
        ),
        _fetch_by_cart,
    )
    if order is None or not order.is_open:
        raise CartCreationError(f"Não foi possível obter pedido para o carrinho {cart.id}")
    if created:
        logger.info("Pedido criado", extra={"tenant_id": tenant_id, "cart_id": cart.id, "order_id": order.id})
    return order


def recompute_order_total(db: Session, order: Order) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(CartItem.qty * CartItem.unit_price), 0))
        .filter(CartItem.cart_id == order.cart_id)
        .scalar()
    )
    total = Decimal(str(total or 0)).quantize(Decimal("0.01"))
    db.query(Order).filter(Order.id == order.id).update({Order.total_amount: total}, synchronize_session=False)
    db.commit()
    db.refresh(order)
    return total


class OrderStateMachine:
    """Aplica cada código de produto de uma mensagem sobre carrinho e pedido."""

    def __init__(
        self,
        db: Session,
        *,
        product_cache: ProductDedupCache | None = None,
        duplicate_window_seconds: float = ITEM_DUPLICATE_WINDOW_SECONDS,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.product_cache = product_cache if product_cache is not None else ProductDedupCache()
        self.duplicate_window = timedelta(seconds=duplicate_window_seconds)
        self._now = now

    def process_codes(
        self,
        codes: list[str],
        *,
        tenant_id: int,
        phone: str,
        message_key: str,
        group_name: str | None = None,
        claim_ttl_seconds: float | None = None,
    ) -> list[CodeResult]:
        return [
            self.process_code(
                code,
                tenant_id=tenant_id,
                phone=phone,
                message_key=message_key,
                group_name=group_name,
                claim_ttl_seconds=claim_ttl_seconds,
            )
            for code in codes
        ]

    def process_code(
        self,
        code: str,
        *,
        tenant_id: int,
        phone: str,
        message_key: str,
        group_name: str | None = None,
        claim_ttl_seconds: float | None = None,
    ) -> CodeResult:
        db = self.db
        product = resolve_product(db, tenant_id, code)
        if product is None:
            logger.info("Produto não encontrado", extra={"tenant_id": tenant_id, "product_code": code})
            return CodeResult(code=code, status=ItemStatus.FAILED, error=ItemError.PRODUCT_NOT_FOUND)

        result = CodeResult(code=code, status=ItemStatus.FAILED, product_id=product.id, product_name=product.name)

        if not self.product_cache.claim(message_key, product.code, ttl_seconds=claim_ttl_seconds):
            result.status = ItemStatus.SKIPPED
            result.reason = "duplicate_message"
            return result

        reservation = reserve(product, 1)
        if reservation.outcome is ReserveOutcome.OUT_OF_STOCK:
            result.error = ItemError.OUT_OF_STOCK
            result.stock_after = reservation.available
            # O aviso de indisponível é enfileirado pela ingestão
            result.notified = True
            return result
        if reservation.outcome is ReserveOutcome.INSUFFICIENT:
            result.error = ItemError.INSUFFICIENT_STOCK
            result.stock_after = reservation.available
            return result

        now = self._now()
        event_type = EventType.from_sale_type(product.sale_type)
        event_date = event_date_for(now)

        try:
            cart = resolve_cart(
                db,
                tenant_id=tenant_id,
                phone=phone,
                event_type=event_type,
                event_date=event_date,
                group_name=group_name,
            )
            order = resolve_order(
                db,
                cart=cart,
                tenant_id=tenant_id,
                phone=phone,
                event_type=event_type,
                event_date=event_date,
            )
        except (CartCreationError, SQLAlchemyError):
            db.rollback()
            logger.exception("Erro ao obter carrinho/pedido", extra={"tenant_id": tenant_id, "product_code": code})
            result.error = ItemError.CART_CREATION_ERROR
            return result

        result.cart_id = cart.id
        result.order_id = order.id

        try:
            status, item = self.upsert_item(cart=cart, product=product, now=now)
        except (CartItemError, SQLAlchemyError):
            db.rollback()
            logger.exception("Erro ao gravar item", extra={"tenant_id": tenant_id, "product_code": code, "cart_id": cart.id})
            result.error = ItemError.CART_ITEM_ERROR
            return result

        result.status = status
        result.cart_item_id = item.id
        result.quantity = item.qty
        result.unit_price = item.unit_price

        if status in {ItemStatus.ADDED, ItemStatus.INCREMENTED}:
            result.stock_after = decrement_stock(db, product, 1)
            recompute_order_total(db, order)

        logger.info(
            "Item processado",
            extra={
                "tenant_id": tenant_id,
                "product_code": product.code,
                "cart_id": cart.id,
                "order_id": order.id,
                "outcome": status.value,
            },
        )
        return result

    def upsert_item(self, *, cart: Cart, product: Product, now: datetime) -> tuple[ItemStatus, CartItem]:
        db = self.db

        def _fetch() -> CartItem | None:
            return (
                db.query(CartItem)
                .filter(CartItem.cart_id == cart.id, CartItem.product_id == product.id)
                .first()
            )

        existing = _fetch()
        if existing is not None:
            return self._apply_repeat(existing, now)

        item, created = insert_or_refetch(
            db,
            lambda: CartItem(
                tenant_id=cart.tenant_id,
                cart_id=cart.id,
                product_id=product.id,
                product_code=product.code,
                product_name=product.name,
                product_image_url=product.image_url,
                unit_price=product.price,
                qty=1,
                last_added_at=now,
            ),
            _fetch,
        )
        if item is None:
            raise CartItemError(f"Falha ao inserir item do produto {product.code}")
        if created:
            return ItemStatus.ADDED, item
        # Corrida com outra entrega: aplica a mesma regra de recência
        return self._apply_repeat(item, now)

    def _apply_repeat(self, item: CartItem, now: datetime) -> tuple[ItemStatus, CartItem]:
        db = self.db
        seen_at = item.last_added_at
        if now - as_naive_utc(seen_at) < self.duplicate_window:
            return ItemStatus.DUPLICATE_IGNORED, item

        # Compare-and-set no instante da última inclusão: só um incremento vence
        updated = (
            db.query(CartItem)
            .filter(CartItem.id == item.id, CartItem.last_added_at == seen_at)
            .update(
                {CartItem.qty: CartItem.qty + 1, CartItem.last_added_at: now},
                synchronize_session=False,
            )
        )
        db.commit()
        db.refresh(item)
        if not updated:
            return ItemStatus.DUPLICATE_IGNORED, item
        return ItemStatus.INCREMENTED, item
