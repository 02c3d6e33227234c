from decimal import Decimal

import pytest

from pdv.validation import (
    ValidationError,
    parse_cancel_sale,
    parse_close_session,
    parse_create_sale,
    parse_finalize_sale,
    parse_list_query,
    parse_open_session,
    parse_record_movement,
)

METHODS = ("dinheiro", "cartao_debito", "cartao_credito", "pix", "transferencia")


def _item(**overrides):
    item = {
        "produto_id": 1,
        "produto_nome": "Dipirona 500mg",
        "quantidade": 1,
        "preco_unitario": 59.90,
        "preco_total": 59.90,
    }
    item.update(overrides)
    return item


def test_create_sale_portuguese_fields():
    command = parse_create_sale({
        "itens": [_item(produto_codigo="DIP500", lote_id="7")],
        "subtotal": 59.90,
        "desconto_valor": "0",
        "total": 59.90,
        "cliente_nome": "Maria",
        "cliente_documento": "123.456.789-00",
        "observacoes": "  balcao  ",
    })

    item = command.items[0]
    assert item.product_id == 1
    assert item.product_code == "DIP500"
    assert item.lot_id == 7
    assert item.quantity == Decimal("1.000")
    assert item.unit_price_cents == 5990
    assert item.line_total_cents == 5990
    assert command.subtotal_cents == 5990
    assert command.discount_cents == 0
    assert command.customer.name == "Maria"
    assert command.notes == "balcao"


def test_create_sale_english_aliases():
    command = parse_create_sale({
        "items": [{"product_id": 2, "name": "Soro", "quantity": "2", "unit_price": "3.50", "line_total": "7.00"}],
        "subtotal": "7.00",
        "discount_percent": "5",
        "total": "6.65",
    })

    assert command.items[0].quantity == Decimal("2.000")
    assert command.discount_percent == Decimal("5")
    assert command.discount_cents is None


@pytest.mark.parametrize("payload", [
    {},
    {"itens": [], "subtotal": 0, "total": 0},
    {"itens": "abc", "subtotal": 0, "total": 0},
    {"itens": [_item(quantidade=0)], "subtotal": 0, "total": 0},
    {"itens": [_item(quantidade=-1)], "subtotal": 0, "total": 0},
    {"itens": [_item(preco_unitario=-1)], "subtotal": 0, "total": 0},
    {"itens": [_item(produto_nome="  ")], "subtotal": 59.9, "total": 59.9},
    {"itens": [_item(produto_id="abc")], "subtotal": 59.9, "total": 59.9},
    {"itens": [_item()], "subtotal": "x", "total": 59.9},
    {"itens": [_item()], "subtotal": 59.9},
    {"itens": [_item()], "subtotal": 59.9, "total": 59.9, "desconto_percentual": 120},
])
def test_create_sale_rejects(payload):
    with pytest.raises(ValidationError):
        parse_create_sale(payload)


def test_finalize_payload():
    command = parse_finalize_sale({
        "venda_id": "12",
        "pagamentos": [
            {"forma_pagamento": "cartao_credito", "valor": 40, "bandeira_cartao": "Visa", "numero_autorizacao": "A1"},
            {"forma_pagamento": "dinheiro", "valor": "50.00"},
        ],
        "troco": 10.10,
    }, METHODS)

    assert command.sale_id == 12
    assert [p.amount_cents for p in command.payments] == [4000, 5000]
    assert command.payments[0].card_brand == "Visa"
    assert command.payments[0].authorization_code == "A1"
    assert command.change_cents == 1010


def test_finalize_change_defaults_to_zero():
    command = parse_finalize_sale({"sale_id": 1, "payments": [{"method": "pix", "amount": 1}]}, METHODS)
    assert command.change_cents == 0


@pytest.mark.parametrize("payload", [
    {"venda_id": 1},
    {"venda_id": 1, "pagamentos": []},
    {"venda_id": 1, "pagamentos": [{"forma_pagamento": "cheque", "valor": 10}]},
    {"venda_id": 1, "pagamentos": [{"forma_pagamento": "pix", "valor": 0}]},
    {"venda_id": 1, "pagamentos": [{"forma_pagamento": "pix", "valor": 10}], "troco": -1},
    {"pagamentos": [{"forma_pagamento": "pix", "valor": 10}]},
])
def test_finalize_rejects(payload):
    with pytest.raises(ValidationError):
        parse_finalize_sale(payload, METHODS)


def test_unknown_method_lists_allowed():
    with pytest.raises(ValidationError) as exc:
        parse_finalize_sale({"venda_id": 1, "pagamentos": [{"forma_pagamento": "cheque", "valor": 1}]}, METHODS)
    assert exc.value.details["allowed"] == list(METHODS)


def test_cancel_payload():
    command = parse_cancel_sale({"venda_id": 3, "motivo": "Erro de digitacao"})
    assert command.sale_id == 3
    assert command.reason == "Erro de digitacao"


def test_list_query_defaults_and_cap():
    query = parse_list_query({}, default_limit=50, max_limit=200)
    assert query.limit == 50
    assert query.offset == 0
    assert query.status is None

    assert parse_list_query({"limit": "1000"}, default_limit=50, max_limit=200).limit == 200


@pytest.mark.parametrize("raw, expected", [
    ("finalized", "finalizada"),
    ("FINALIZADA", "finalizada"),
    ("draft", "rascunho"),
    ("canceled", "cancelada"),
])
def test_list_query_status_aliases(raw, expected):
    assert parse_list_query({"status": raw}, default_limit=50, max_limit=200).status == expected


@pytest.mark.parametrize("payload", [
    {"status": "paga"},
    {"limit": "0"},
    {"offset": "-1"},
    {"data_inicio": "ontem"},
    {"data_inicio": "2026-03-02", "data_fim": "2026-03-01"},
])
def test_list_query_rejects(payload):
    with pytest.raises(ValidationError):
        parse_list_query(payload, default_limit=50, max_limit=200)


def test_list_query_dates():
    query = parse_list_query(
        {"date_from": "2026-03-01", "date_to": "2026-03-01T23:59:59Z"},
        default_limit=50, max_limit=200,
    )
    assert query.date_from.day == 1
    assert query.date_to.hour == 23


def test_open_session_payload():
    command = parse_open_session({"valor_inicial": "150.00", "observacoes": "Turno"})
    assert command.initial_cents == 15000
    assert command.notes == "Turno"

    with pytest.raises(ValidationError):
        parse_open_session({"valor_inicial": -5})
    with pytest.raises(ValidationError):
        parse_open_session({})


@pytest.mark.parametrize("raw, expected", [
    ("sangria", "sangria"),
    ("SUPRIMENTO", "suprimento"),
    ("withdrawal", "sangria"),
    ("deposit", "suprimento"),
])
def test_movement_type_aliases(raw, expected):
    command = parse_record_movement({"caixa_id": 1, "tipo": raw, "valor": 10, "descricao": "Cofre"})
    assert command.movement_type == expected


@pytest.mark.parametrize("payload", [
    {"caixa_id": 1, "tipo": "estorno", "valor": 10, "descricao": "x"},
    {"caixa_id": 1, "tipo": "sangria", "valor": 0, "descricao": "x"},
    {"caixa_id": 1, "tipo": "sangria", "valor": 10},
    {"caixa_id": 1, "tipo": "sangria", "valor": 10, "descricao": ""},
    {"tipo": "sangria", "valor": 10, "descricao": "x"},
])
def test_movement_rejects(payload):
    with pytest.raises(ValidationError):
        parse_record_movement(payload)


def test_close_session_payload():
    command = parse_close_session({"session_id": 4, "counted_amount": 0})
    assert command.session_id == 4
    assert command.counted_cents == 0
