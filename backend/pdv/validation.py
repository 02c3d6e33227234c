"""
Request validation for the action endpoints.

Each action has a frozen command dataclass and a parse_* function that
turns a raw JSON/query mapping into it, or raises ValidationError. Field
names follow the Portuguese wire contract (itens, quantidade, valor, ...);
the English names are accepted as aliases.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from .errors import ServiceError
from .money import to_cents, to_quantity
from .models.cash import MOVEMENT_TYPES, MOVEMENT_DEPOSIT, MOVEMENT_WITHDRAWAL
from .models.sales import SALE_STATUSES, SALE_STATUS_ALIASES
from .time_utils import parse_iso_datetime

# Maximum single amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

MOVEMENT_TYPE_ALIASES = {
    "withdrawal": MOVEMENT_WITHDRAWAL,
    "deposit": MOVEMENT_DEPOSIT,
}


class ValidationError(ServiceError):
    """400-level input problem."""


# =============================================================================
# COMMANDS
# =============================================================================

@dataclass(frozen=True)
class SaleItemInput:
    product_id: int
    product_name: str
    quantity: Decimal
    unit_price_cents: int
    line_total_cents: int
    product_code: str | None = None
    lot_id: int | None = None


@dataclass(frozen=True)
class CustomerInput:
    customer_id: str | None = None
    name: str | None = None
    document: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class CreateSaleCommand:
    items: tuple[SaleItemInput, ...]
    subtotal_cents: int
    total_cents: int
    discount_cents: int | None = None
    discount_percent: Decimal | None = None
    customer: CustomerInput = field(default_factory=CustomerInput)
    notes: str | None = None


@dataclass(frozen=True)
class PaymentInput:
    method: str
    amount_cents: int
    card_brand: str | None = None
    authorization_code: str | None = None
    transaction_code: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class FinalizeSaleCommand:
    sale_id: int
    payments: tuple[PaymentInput, ...]
    change_cents: int = 0


@dataclass(frozen=True)
class CancelSaleCommand:
    sale_id: int
    reason: str | None = None


@dataclass(frozen=True)
class ListQuery:
    limit: int
    offset: int = 0
    date_from: datetime | None = None
    date_to: datetime | None = None
    status: str | None = None


@dataclass(frozen=True)
class OpenSessionCommand:
    initial_cents: int
    notes: str | None = None


@dataclass(frozen=True)
class RecordMovementCommand:
    session_id: int
    movement_type: str
    amount_cents: int
    description: str


@dataclass(frozen=True)
class CloseSessionCommand:
    session_id: int
    counted_cents: int
    notes: str | None = None


# =============================================================================
# FIELD HELPERS
# =============================================================================

def _pick(payload: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in payload and payload[name] is not None:
            return payload[name]
    return default


def _require_mapping(payload: Any) -> Mapping[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValidationError("Invalid JSON payload")
    return payload


def _text(value: Any, label: str, *, max_length: int | None = None, required: bool = False) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{label} is required")
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{label} must be a string")
    text = str(value).strip()
    if not text:
        if required:
            raise ValidationError(f"{label} cannot be blank")
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{label} exceeds max length {max_length}")
    return text


def _identifier(value: Any, label: str) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{label} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be an integer id")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f"{label} must be an integer id")


def _optional_identifier(value: Any, label: str) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _identifier(value, label)


def _cents(value: Any, label: str, *, positive: bool = False, required: bool = True) -> int | None:
    if value is None:
        if required:
            raise ValidationError(f"{label} is required")
        return None
    try:
        cents = to_cents(value)
    except ValueError:
        raise ValidationError(f"{label} must be a number")
    if positive and cents <= 0:
        raise ValidationError(f"{label} must be > 0")
    if cents < 0:
        raise ValidationError(f"{label} must be >= 0")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{label} exceeds the maximum amount")
    return cents


def _int_param(value: Any, label: str, *, default: int, minimum: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be an integer")
    if number < minimum:
        raise ValidationError(f"{label} must be >= {minimum}")
    return number


def _datetime_param(value: Any, label: str) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{label} must be an ISO-8601 date or datetime")


# =============================================================================
# SALES
# =============================================================================

def _parse_item(raw: Any, index: int) -> SaleItemInput:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"itens[{index}] must be an object")
    label = f"itens[{index}]"

    try:
        quantity = to_quantity(_pick(raw, "quantidade", "quantity", default=0))
    except ValueError:
        raise ValidationError(f"{label}.quantidade must be a number")
    if quantity <= 0:
        raise ValidationError(f"{label}.quantidade must be > 0")

    unit_price = _cents(_pick(raw, "preco_unitario", "unit_price"), f"{label}.preco_unitario")
    line_total = _pick(raw, "preco_total", "line_total")
    line_total_cents = _cents(line_total, f"{label}.preco_total")

    return SaleItemInput(
        product_id=_identifier(_pick(raw, "produto_id", "product_id"), f"{label}.produto_id"),
        product_name=_text(_pick(raw, "produto_nome", "name", "product_name"), f"{label}.produto_nome",
                           max_length=255, required=True),
        product_code=_text(_pick(raw, "produto_codigo", "code", "product_code"), f"{label}.produto_codigo",
                           max_length=64),
        quantity=quantity,
        unit_price_cents=unit_price,
        line_total_cents=line_total_cents,
        lot_id=_optional_identifier(_pick(raw, "lote_id", "lot_id"), f"{label}.lote_id"),
    )


def parse_create_sale(payload: Any) -> CreateSaleCommand:
    payload = _require_mapping(payload)

    raw_items = _pick(payload, "itens", "items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("itens must be a non-empty list")
    items = tuple(_parse_item(raw, i) for i, raw in enumerate(raw_items))

    discount_percent = _pick(payload, "desconto_percentual", "discount_percent")
    if discount_percent is not None:
        try:
            discount_percent = Decimal(str(discount_percent))
        except ArithmeticError:
            raise ValidationError("desconto_percentual must be a number")
        if not discount_percent.is_finite() or discount_percent < 0 or discount_percent > 100:
            raise ValidationError("desconto_percentual must be between 0 and 100")

    customer = CustomerInput(
        customer_id=_text(_pick(payload, "cliente_id", "customer_id"), "cliente_id", max_length=64),
        name=_text(_pick(payload, "cliente_nome", "customer_name"), "cliente_nome", max_length=255),
        document=_text(_pick(payload, "cliente_documento", "customer_document"), "cliente_documento", max_length=32),
        phone=_text(_pick(payload, "cliente_telefone", "customer_phone"), "cliente_telefone", max_length=32),
    )

    return CreateSaleCommand(
        items=items,
        subtotal_cents=_cents(payload.get("subtotal"), "subtotal"),
        discount_cents=_cents(_pick(payload, "desconto_valor", "discount_amount"), "desconto_valor", required=False),
        discount_percent=discount_percent,
        total_cents=_cents(payload.get("total"), "total"),
        customer=customer,
        notes=_text(_pick(payload, "observacoes", "notes"), "observacoes"),
    )


def _parse_payment(raw: Any, index: int, allowed_methods) -> PaymentInput:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"pagamentos[{index}] must be an object")
    label = f"pagamentos[{index}]"

    method = _text(_pick(raw, "forma_pagamento", "method"), f"{label}.forma_pagamento", required=True)
    if method not in allowed_methods:
        raise ValidationError(
            f"{label}.forma_pagamento must be one of {', '.join(allowed_methods)}",
            details={"allowed": list(allowed_methods)},
        )

    return PaymentInput(
        method=method,
        amount_cents=_cents(_pick(raw, "valor", "amount"), f"{label}.valor", positive=True),
        card_brand=_text(_pick(raw, "bandeira_cartao", "brand", "card_brand"), f"{label}.bandeira_cartao",
                         max_length=64),
        authorization_code=_text(_pick(raw, "numero_autorizacao", "auth_code"), f"{label}.numero_autorizacao",
                                 max_length=128),
        transaction_code=_text(_pick(raw, "codigo_transacao", "tx_code"), f"{label}.codigo_transacao",
                               max_length=128),
        notes=_text(_pick(raw, "observacoes", "notes"), f"{label}.observacoes"),
    )


def parse_finalize_sale(payload: Any, allowed_methods) -> FinalizeSaleCommand:
    payload = _require_mapping(payload)

    raw_payments = _pick(payload, "pagamentos", "payments")
    if not isinstance(raw_payments, list) or not raw_payments:
        raise ValidationError("pagamentos must be a non-empty list")

    return FinalizeSaleCommand(
        sale_id=_identifier(_pick(payload, "venda_id", "sale_id"), "venda_id"),
        payments=tuple(_parse_payment(raw, i, allowed_methods) for i, raw in enumerate(raw_payments)),
        change_cents=_cents(_pick(payload, "troco", "change"), "troco", required=False) or 0,
    )


def parse_cancel_sale(payload: Any) -> CancelSaleCommand:
    payload = _require_mapping(payload)
    return CancelSaleCommand(
        sale_id=_identifier(_pick(payload, "venda_id", "sale_id"), "venda_id"),
        reason=_text(_pick(payload, "motivo", "reason"), "motivo", max_length=255),
    )


def parse_sale_id(payload: Any) -> int:
    payload = _require_mapping(payload)
    return _identifier(_pick(payload, "venda_id", "sale_id"), "venda_id")


def parse_sale_status(value: Any) -> str | None:
    if value is None or value == "":
        return None
    status = SALE_STATUS_ALIASES.get(str(value).lower(), str(value).lower())
    if status not in SALE_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(SALE_STATUSES)}")
    return status


def parse_list_query(payload: Any, *, default_limit: int, max_limit: int) -> ListQuery:
    payload = _require_mapping(payload)
    limit = _int_param(_pick(payload, "limite", "limit"), "limite", default=default_limit, minimum=1)
    date_from = _datetime_param(_pick(payload, "data_inicio", "date_from"), "data_inicio")
    date_to = _datetime_param(_pick(payload, "data_fim", "date_to"), "data_fim")
    if date_from and date_to and date_from > date_to:
        raise ValidationError("data_inicio must not be after data_fim")
    return ListQuery(
        limit=min(limit, max_limit),
        offset=_int_param(payload.get("offset"), "offset", default=0),
        date_from=date_from,
        date_to=date_to,
        status=parse_sale_status(payload.get("status")),
    )


# =============================================================================
# CASH SESSIONS
# =============================================================================

def parse_open_session(payload: Any) -> OpenSessionCommand:
    payload = _require_mapping(payload)
    return OpenSessionCommand(
        initial_cents=_cents(_pick(payload, "valor_inicial", "initial_amount"), "valor_inicial"),
        notes=_text(_pick(payload, "observacoes", "notes"), "observacoes"),
    )


def parse_record_movement(payload: Any) -> RecordMovementCommand:
    payload = _require_mapping(payload)

    movement_type = _text(_pick(payload, "tipo", "type"), "tipo", required=True).lower()
    movement_type = MOVEMENT_TYPE_ALIASES.get(movement_type, movement_type)
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"tipo must be one of {', '.join(MOVEMENT_TYPES)}")

    return RecordMovementCommand(
        session_id=_identifier(_pick(payload, "caixa_id", "session_id"), "caixa_id"),
        movement_type=movement_type,
        amount_cents=_cents(_pick(payload, "valor", "amount"), "valor", positive=True),
        description=_text(_pick(payload, "descricao", "description"), "descricao", max_length=255, required=True),
    )


def parse_close_session(payload: Any) -> CloseSessionCommand:
    payload = _require_mapping(payload)
    return CloseSessionCommand(
        session_id=_identifier(_pick(payload, "caixa_id", "session_id"), "caixa_id"),
        counted_cents=_cents(_pick(payload, "valor_final", "counted_amount"), "valor_final"),
        notes=_text(_pick(payload, "observacoes", "notes"), "observacoes"),
    )


def parse_session_id(payload: Any) -> int:
    payload = _require_mapping(payload)
    return _identifier(_pick(payload, "caixa_id", "session_id"), "caixa_id")
