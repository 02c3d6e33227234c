"""
Action discriminators for the operation endpoints.

Each endpoint takes ?action=<name>. The names are an explicit enumeration;
anything else is rejected with UnknownAction before a handler runs.
"""

from __future__ import annotations

from enum import Enum

from .errors import ServiceError


class UnknownAction(ServiceError):
    pass


class SaleAction(str, Enum):
    CREATE = "CRIAR_VENDA_PDV"
    FINALIZE = "FINALIZAR_VENDA"
    CANCEL = "CANCELAR_VENDA"
    GET = "obter-venda"
    LIST = "listar-vendas"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            alias = SALE_ACTION_ALIASES.get(value.lower())
            if alias is not None:
                return alias
        return None


# Lowercase names used by older clients
SALE_ACTION_ALIASES = {
    "criar-venda": SaleAction.CREATE,
    "finalizar-venda": SaleAction.FINALIZE,
    "cancelar-venda": SaleAction.CANCEL,
}


class CashAction(str, Enum):
    OPEN = "abrir-caixa"
    RECORD_MOVEMENT = "registrar-movimento"
    CLOSE = "fechar-caixa"
    GET_ACTIVE = "obter-caixa-ativo"
    HISTORY = "historico-caixa"
    SUMMARY = "resumo-caixa"


def parse_action(action_type, raw: str | None):
    """Resolve a raw ?action= value to a member of action_type."""
    if not raw:
        raise UnknownAction(
            "action is required",
            details={"allowed": [a.value for a in action_type]},
        )
    try:
        return action_type(raw.strip())
    except ValueError:
        raise UnknownAction(
            f"Unknown action: {raw}",
            details={"allowed": [a.value for a in action_type]},
        )
