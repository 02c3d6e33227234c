"""
Payment reconciler.

Pure computation: no database access, no side effects. Given the tenders,
the declared change and the sale total (all in cents) it decides whether
the payment set settles the sale.

RULE: sum(amounts) - change must equal total within the tolerance.
Any mix of methods is allowed; only the sum matters.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..errors import ServiceError
from ..money import cents_to_amount

DEFAULT_TOLERANCE_CENTS = 1


class PaymentMismatch(ServiceError):
    """Tendered payments minus change do not settle the sale total."""

    def __init__(self, difference_cents: int, *, total_cents: int, tendered_cents: int, change_cents: int):
        if difference_cents < 0:
            message = f"Payments are short by {cents_to_amount(-difference_cents):.2f}"
        else:
            message = f"Payments are over by {cents_to_amount(difference_cents):.2f}"
        super().__init__(
            message,
            details={
                "difference": cents_to_amount(difference_cents),
                "total": cents_to_amount(total_cents),
                "tendered": cents_to_amount(tendered_cents),
                "change": cents_to_amount(change_cents),
            },
        )
        self.difference_cents = difference_cents


@dataclass(frozen=True)
class Reconciliation:
    total_cents: int
    tendered_cents: int
    change_cents: int

    @property
    def difference_cents(self) -> int:
        return self.tendered_cents - self.change_cents - self.total_cents


def reconcile(
    amounts_cents: Iterable[int],
    change_cents: int,
    total_cents: int,
    *,
    tolerance_cents: int = DEFAULT_TOLERANCE_CENTS,
) -> Reconciliation:
    """
    Check a tender set against a sale total.

    Returns the Reconciliation on success; raises PaymentMismatch carrying
    the signed difference (negative = short) otherwise.
    """
    result = Reconciliation(
        total_cents=total_cents,
        tendered_cents=sum(amounts_cents),
        change_cents=change_cents,
    )
    if abs(result.difference_cents) > tolerance_cents:
        raise PaymentMismatch(
            result.difference_cents,
            total_cents=total_cents,
            tendered_cents=result.tendered_cents,
            change_cents=change_cents,
        )
    return result
