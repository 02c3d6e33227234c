from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from pdv.extensions import db
from pdv.models import Product, Sale
from pdv.services import sales_service

from conftest import sale_payload

URL = "/api/vendas-operations"


def _create(client, headers, payload, action="CRIAR_VENDA_PDV"):
    return client.post(f"{URL}?action={action}", json=payload, headers=headers)


def _finalize(client, headers, sale_id, payments, troco=0):
    return client.post(
        f"{URL}?action=FINALIZAR_VENDA",
        json={"venda_id": sale_id, "pagamentos": payments, "troco": troco},
        headers=headers,
    )


def test_requires_authentication(client, db_session):
    response = client.get(f"{URL}?action=listar-vendas")
    assert response.status_code == 401


def test_unknown_action(client, auth_headers):
    response = client.post(f"{URL}?action=APAGAR_TUDO", json={}, headers=auth_headers)

    assert response.status_code == 400
    body = response.get_json()
    assert body["code"] == "UnknownAction"
    assert "CRIAR_VENDA_PDV" in body["details"]["allowed"]


def test_missing_action(client, auth_headers):
    response = client.post(URL, json={}, headers=auth_headers)
    assert response.status_code == 400
    assert response.get_json()["code"] == "UnknownAction"


def test_create_without_session(client, auth_headers, dipirona):
    response = _create(client, auth_headers, sale_payload((dipirona, 1, 59.90)))

    assert response.status_code == 400
    assert response.get_json()["code"] == "NoActiveSession"
    assert db.session.query(Sale).count() == 0


def test_create_validation_error(client, auth_headers, cash_session):
    response = _create(client, auth_headers, {"itens": [], "subtotal": 0, "total": 0})

    assert response.status_code == 400
    assert response.get_json()["code"] == "ValidationError"


def test_invalid_json(client, auth_headers, cash_session):
    response = client.post(
        f"{URL}?action=CRIAR_VENDA_PDV",
        data="{not json",
        headers={**auth_headers, "Content-Type": "application/json"},
    )
    assert response.status_code == 400


def test_full_sale_flow(client, auth_headers, cash_session, dipirona, amoxicilina):
    created = _create(client, auth_headers, sale_payload((dipirona, 1, 59.90), (amoxicilina, 1, 10.10)))
    assert created.status_code == 201
    body = created.get_json()
    assert body["sale_number"] == "000001"
    assert body["sale"]["status"] == "rascunho"
    assert body["sale"]["total"] == 70.0
    assert len(body["sale"]["items"]) == 2
    sale_id = body["sale_id"]

    finalized = _finalize(client, auth_headers, sale_id, [
        {"forma_pagamento": "cartao_debito", "valor": 40.00, "bandeira_cartao": "Elo"},
        {"forma_pagamento": "dinheiro", "valor": 30.00},
    ])
    assert finalized.status_code == 200
    assert finalized.get_json() == {
        "success": True,
        "sale_id": sale_id,
        "sale_number": "000001",
        "total": 70.0,
        "change": 0.0,
        "warnings": [],
    }

    fetched = client.get(f"{URL}?action=obter-venda&venda_id={sale_id}", headers=auth_headers)
    assert fetched.status_code == 200
    sale = fetched.get_json()["sale"]
    assert sale["status"] == "finalizada"
    assert sale["payment_status"] == "pago"
    assert [p["method"] for p in sale["payments"]] == ["cartao_debito", "dinheiro"]
    assert sale["payments"][0]["card_brand"] == "Elo"

    db.session.expire_all()
    assert db.session.get(Product, dipirona.id).stock_quantity == Decimal("99")

    cancelled = client.post(
        f"{URL}?action=CANCELAR_VENDA",
        json={"venda_id": sale_id, "motivo": "Devolucao"},
        headers=auth_headers,
    )
    assert cancelled.status_code == 200
    assert cancelled.get_json()["success"] is True

    db.session.expire_all()
    assert db.session.get(Product, dipirona.id).stock_quantity == Decimal("100")


def test_payment_mismatch_reports_difference(client, auth_headers, cash_session, dipirona):
    sale_id = _create(client, auth_headers, sale_payload((dipirona, 1, 59.90))).get_json()["sale_id"]

    response = _finalize(client, auth_headers, sale_id, [{"forma_pagamento": "dinheiro", "valor": 50.00}])

    assert response.status_code == 400
    body = response.get_json()
    assert body["code"] == "PaymentMismatch"
    assert body["details"]["difference"] == -9.9
    assert "short by 9.90" in body["error"]
    assert db.session.get(Sale, sale_id).status == "rascunho"


def test_finalize_twice_and_cancel_twice(client, auth_headers, cash_session, dipirona):
    sale_id = _create(client, auth_headers, sale_payload((dipirona, 1, 59.90))).get_json()["sale_id"]
    payments = [{"forma_pagamento": "pix", "valor": 59.90}]

    assert _finalize(client, auth_headers, sale_id, payments).status_code == 200
    again = _finalize(client, auth_headers, sale_id, payments)
    assert again.status_code == 400
    assert again.get_json()["code"] == "SaleAlreadyFinalized"

    cancel = lambda: client.post(f"{URL}?action=CANCELAR_VENDA", json={"venda_id": sale_id}, headers=auth_headers)
    assert cancel().status_code == 200
    second = cancel()
    assert second.status_code == 400
    assert second.get_json()["code"] == "AlreadyCancelled"


def test_get_unknown_sale(client, auth_headers):
    response = client.get(f"{URL}?action=obter-venda&venda_id=123", headers=auth_headers)

    assert response.status_code == 404
    assert response.get_json()["code"] == "SaleNotFound"


def test_lowercase_aliases(client, auth_headers, cash_session, dipirona):
    created = _create(client, auth_headers, sale_payload((dipirona, 1, 59.90)), action="criar-venda")
    assert created.status_code == 201

    response = client.post(
        f"{URL}?action=finalizar-venda",
        json={"sale_id": created.get_json()["sale_id"], "payments": [{"method": "dinheiro", "amount": 59.90}]},
        headers=auth_headers,
    )
    assert response.status_code == 200


def test_list_sales(client, auth_headers, cash_session, dipirona):
    ids = [
        _create(client, auth_headers, sale_payload((dipirona, 1, 59.90))).get_json()["sale_id"]
        for _ in range(3)
    ]
    _finalize(client, auth_headers, ids[0], [{"forma_pagamento": "dinheiro", "valor": 59.90}])

    everything = client.get(f"{URL}?action=listar-vendas", headers=auth_headers).get_json()
    assert [s["id"] for s in everything["sales"]] == list(reversed(ids))
    assert everything["limit"] == 50

    finalized = client.get(f"{URL}?action=listar-vendas&status=finalized", headers=auth_headers).get_json()
    assert [s["id"] for s in finalized["sales"]] == [ids[0]]

    page = client.post(f"{URL}?action=listar-vendas", json={"limite": 2, "offset": 2}, headers=auth_headers)
    assert [s["id"] for s in page.get_json()["sales"]] == [ids[0]]


def test_storage_error_is_500(client, auth_headers, cash_session, dipirona, monkeypatch):
    def broken(sale, items):
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(sales_service, "_persist_items", broken)

    response = _create(client, auth_headers, sale_payload((dipirona, 1, 59.90)))

    assert response.status_code == 500
    assert response.get_json()["code"] == "SaleStorageError"
    assert db.session.query(Sale).count() == 0
