import pytest

from pdv.services.reconciliation_service import PaymentMismatch, reconcile


def test_exact_single_tender_reconciles():
    result = reconcile([5990], 0, 5990)
    assert result.difference_cents == 0
    assert result.tendered_cents == 5990


def test_multi_tender_sum_is_what_counts():
    result = reconcile([4000, 3000], 0, 7000)
    assert result.tendered_cents == 7000


def test_change_is_subtracted_from_tendered():
    result = reconcile([10000], 4010, 5990)
    assert result.difference_cents == 0


@pytest.mark.parametrize("amounts, change, total", [
    ([5989], 0, 5990),
    ([5991], 0, 5990),
    ([10000], 4011, 5990),
])
def test_within_one_cent_tolerance(amounts, change, total):
    reconcile(amounts, change, total, tolerance_cents=1)


def test_short_payment_reports_signed_difference():
    with pytest.raises(PaymentMismatch) as exc:
        reconcile([5000], 0, 5990)

    assert exc.value.difference_cents == -990
    assert exc.value.details["difference"] == -9.9
    assert exc.value.details["total"] == 59.9
    assert "short by 9.90" in exc.value.message
    assert exc.value.status_code == 400


def test_over_payment_without_declared_change_fails():
    with pytest.raises(PaymentMismatch) as exc:
        reconcile([10000], 0, 5990)

    assert exc.value.difference_cents == 4010
    assert "over by 40.10" in exc.value.message


def test_two_cents_off_is_outside_default_tolerance():
    with pytest.raises(PaymentMismatch):
        reconcile([5988], 0, 5990)


def test_zero_tolerance_is_exact():
    with pytest.raises(PaymentMismatch):
        reconcile([5989], 0, 5990, tolerance_cents=0)
