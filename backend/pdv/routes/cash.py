# backend/pdv/routes/cash.py
"""
Cash drawer operations API (caixa)

/api/caixa-operations?action=<CashAction>

ACTIONS:
- abrir-caixa: open the drawer with an initial float (201)
- registrar-movimento: withdrawal (sangria) or deposit (suprimento) (201)
- fechar-caixa: count and close; returns expected balance and difference
- obter-caixa-ativo: the open session with its derived balance, or null
- historico-caixa: sessions, newest first
- resumo-caixa: balance breakdown, tenders per method, counts, movements
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..actions import CashAction, parse_action
from ..errors import ServiceError
from ..extensions import db
from ..money import cents_to_amount
from ..services import cash_session_service
from ..validation import (
    parse_close_session,
    parse_list_query,
    parse_open_session,
    parse_record_movement,
    parse_session_id,
)
from ..decorators import require_auth
from .common import error_response, request_payload

cash_bp = Blueprint("cash", __name__, url_prefix="/api")

DEFAULT_HISTORY_LIMIT = 20


def _open(payload: dict):
    command = parse_open_session(payload)
    session = cash_session_service.open_session(
        command.initial_cents,
        user_id=g.current_user.id,
        notes=command.notes,
    )
    balance = cash_session_service.compute_balance(session)
    return {"session": session.to_dict(), "balance": balance.to_dict()}, 201


def _record_movement(payload: dict):
    command = parse_record_movement(payload)
    movement = cash_session_service.record_movement(
        command.session_id,
        command.movement_type,
        command.amount_cents,
        command.description,
        user_id=g.current_user.id,
    )
    balance = cash_session_service.compute_balance(movement.cash_session)
    return {"movement": movement.to_dict(), "balance": balance.to_dict()}, 201


def _close(payload: dict):
    command = parse_close_session(payload)
    session, balance = cash_session_service.close_session(
        command.session_id,
        command.counted_cents,
        user_id=g.current_user.id,
        notes=command.notes,
    )
    summary = balance.to_dict()
    summary["counted_amount"] = cents_to_amount(session.counted_cents)
    summary["difference"] = cents_to_amount(session.difference_cents)
    return {"session": session.to_dict(), "summary": summary}, 200


def _get_active(payload: dict):
    session = cash_session_service.get_active_session()
    if session is None:
        return {"session": None}, 200
    balance = cash_session_service.compute_balance(session)
    return {
        "session": session.to_dict(),
        "balance": balance.to_dict(),
        "sales_count": cash_session_service.count_session_sales(session.id),
    }, 200


def _history(payload: dict):
    query = parse_list_query(
        payload,
        default_limit=DEFAULT_HISTORY_LIMIT,
        max_limit=current_app.config["SALES_LIST_MAX_LIMIT"],
    )
    sessions = cash_session_service.list_sessions(
        limit=query.limit,
        offset=query.offset,
        date_from=query.date_from,
        date_to=query.date_to,
    )
    return {"sessions": [s.to_dict() for s in sessions], "count": len(sessions)}, 200


def _summary(payload: dict):
    return cash_session_service.get_session_summary(parse_session_id(payload)), 200


HANDLERS = {
    CashAction.OPEN: _open,
    CashAction.RECORD_MOVEMENT: _record_movement,
    CashAction.CLOSE: _close,
    CashAction.GET_ACTIVE: _get_active,
    CashAction.HISTORY: _history,
    CashAction.SUMMARY: _summary,
}


@cash_bp.route("/caixa-operations", methods=["GET", "POST"])
@require_auth
def caixa_operations_route():
    action = request.args.get("action")
    try:
        handler = HANDLERS[parse_action(CashAction, action)]
        body, status = handler(request_payload())
        return jsonify(body), status

    except ServiceError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Cash operation %s failed", action)
        return jsonify({"error": "Internal server error"}), 500
