# backend/pdv/routes/sales.py
"""
Sales operations API (vendas)

One endpoint, many operations: /api/vendas-operations?action=<SaleAction>.
Each action validates its payload into a command before the service runs.

ACTIONS:
- CRIAR_VENDA_PDV: create a draft sale with items (201)
- FINALIZAR_VENDA: reconcile payments, finalize, decrement stock
- CANCELAR_VENDA: cancel, reversing stock for finalized sales
- obter-venda: sale with items and payments
- listar-vendas: sale headers, newest first
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..actions import SaleAction, parse_action
from ..errors import ServiceError
from ..extensions import db
from ..services import sales_service
from ..validation import (
    parse_cancel_sale,
    parse_create_sale,
    parse_finalize_sale,
    parse_list_query,
    parse_sale_id,
)
from ..decorators import require_auth
from .common import error_response, request_payload

sales_bp = Blueprint("sales", __name__, url_prefix="/api")

DEFAULT_LIST_LIMIT = 50


def _create(payload: dict):
    command = parse_create_sale(payload)
    sale = sales_service.create_sale(command, user_id=g.current_user.id)
    return {
        "sale_id": sale.id,
        "sale_number": sale.sale_number,
        "sale": sale.to_dict(include_children=True),
    }, 201


def _finalize(payload: dict):
    command = parse_finalize_sale(payload, current_app.config["PAYMENT_METHODS"])
    return sales_service.finalize_sale(command, user_id=g.current_user.id), 200


def _cancel(payload: dict):
    command = parse_cancel_sale(payload)
    return sales_service.cancel_sale(command, user_id=g.current_user.id), 200


def _get(payload: dict):
    sale = sales_service.get_sale(parse_sale_id(payload))
    return {"sale": sale.to_dict(include_children=True)}, 200


def _list(payload: dict):
    query = parse_list_query(
        payload,
        default_limit=DEFAULT_LIST_LIMIT,
        max_limit=current_app.config["SALES_LIST_MAX_LIMIT"],
    )
    sales = sales_service.list_sales(query)
    return {
        "sales": [sale.to_dict() for sale in sales],
        "count": len(sales),
        "limit": query.limit,
        "offset": query.offset,
    }, 200


HANDLERS = {
    SaleAction.CREATE: _create,
    SaleAction.FINALIZE: _finalize,
    SaleAction.CANCEL: _cancel,
    SaleAction.GET: _get,
    SaleAction.LIST: _list,
}


@sales_bp.route("/vendas-operations", methods=["GET", "POST"])
@require_auth
def vendas_operations_route():
    action = request.args.get("action")
    try:
        handler = HANDLERS[parse_action(SaleAction, action)]
        body, status = handler(request_payload())
        return jsonify(body), status

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Sales operation %s failed", action)
        return jsonify({"error": "Internal server error"}), 500
