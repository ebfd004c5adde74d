"""
Totals Service
Recomputes the derived monetary header fields of an expense report
"""

from typing import Any, Dict

from src.models.expense_report import PaymentMethod

TOTAL_FIELDS = (
    "total_amount",
    "university_card_amount",
    "personal_amount",
    "net_reimbursement",
)


def _item_amount(item: Any) -> float:
    return getattr(item, "amount_in_inr", None) or getattr(item, "amount", None) or 0.0


def _method(item: Any):
    method = getattr(item, "payment_method", None)
    return PaymentMethod(method) if method is not None else None


def recalculate_totals(report: Any) -> Any:
    """
    Recalculate all totals of an expense report in place

    Only the derived total fields are written; calling it twice on the
    same items yields the same values.

    Args:
        report: Expense report (ORM object or anything with ``items``)

    Returns:
        The same report, for chaining
    """
    if report is None:
        raise ValueError("report is required")

    items = list(getattr(report, "items", None) or [])

    if not items:
        report.total_amount = 0.0
        report.university_card_amount = 0.0
        report.personal_amount = 0.0
        report.net_reimbursement = 0.0
        return report

    report.total_amount = sum(_item_amount(item) for item in items)
    report.university_card_amount = sum(
        _item_amount(item) for item in items
        if _method(item) == PaymentMethod.UNIVERSITY_CARD
    )
    report.personal_amount = sum(
        _item_amount(item) for item in items
        if _method(item) == PaymentMethod.PERSONAL_FUNDS
    )
    report.net_reimbursement = report.personal_amount - (getattr(report, "non_reimbursable_amount", None) or 0.0)
    return report


def snapshot_totals(report: Any) -> Dict[str, float]:
    """Current values of the derived total fields"""
    return {field: getattr(report, field, None) for field in TOTAL_FIELDS}
