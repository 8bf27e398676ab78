"""Builds QuickBooks ``Line`` arrays from local line items.

Every numeric line satisfies ``Amount == round(Qty * UnitPrice, 2)``. The unit
price is derived from the stored line total, never taken from a stored unit
price, so the amount QuickBooks recomputes matches the local total.

The arrays are always complete: on update QuickBooks replaces the whole line
set, so any remote line missing from the array is dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence

from qbo_sync.db.models import (
    EstimateLineItems,
    InvoiceLineItems,
    VendorBillLineItems,
    VendorBills,
)

if TYPE_CHECKING:
    from qbo_sync.services.resolver import EntityResolver


MIN_UNIT_PRICE_PLACES = 5
MAX_UNIT_PRICE_PLACES = 10
CENT = Decimal("0.01")
ZERO = Decimal("0")
ONE = Decimal("1")
NON_TAXABLE = {"value": "NON"}


@dataclass(frozen=True)
class LineAmounts:
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def compute_line_amounts(quantity: Any, total: Any) -> LineAmounts:
    amount = to_decimal(total).quantize(CENT, rounding=ROUND_HALF_UP)
    qty = to_decimal(quantity)
    if qty > ZERO:
        exact = amount / qty
        for places in range(MIN_UNIT_PRICE_PLACES, MAX_UNIT_PRICE_PLACES + 1):
            unit_price = exact.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
            if (qty * unit_price).quantize(CENT, rounding=ROUND_HALF_UP) == amount:
                return LineAmounts(quantity=qty, unit_price=unit_price, amount=amount)
    # Non-positive quantities, and totals no unit price can reproduce, become a single unit.
    return LineAmounts(
        quantity=ONE,
        unit_price=amount.quantize(Decimal(1).scaleb(-MIN_UNIT_PRICE_PLACES)),
        amount=amount,
    )


def is_billable(bill: VendorBills, lines: Iterable[VendorBillLineItems]) -> bool:
    """A bill is billable to a customer only through a purchase order or a product line.

    The expense category never makes a bill billable, so labor costs stay
    internal expenses.
    """
    if bill.purchase_order_id is not None:
        return True
    return any(line.product_id is not None for line in lines)


def _number(value: Decimal) -> float:
    return float(value)


async def build_bill_lines(
    lines: Sequence[VendorBillLineItems],
    *,
    billable: bool,
    resolver: "EntityResolver",
    customer_ref: Optional[dict[str, str]] = None,
    fallback_amount: Any = None,
    fallback_description: Optional[str] = None,
) -> list[dict[str, Any]]:
    built: list[dict[str, Any]] = []
    for line in lines:
        amounts = compute_line_amounts(line.quantity, line.total)
        if amounts.amount == ZERO:
            continue
        if billable and line.product_id is not None:
            item_id = await resolver.resolve_product_item(line.product_id)
            built.append(_item_expense_line(line.description, amounts, item_id, customer_ref))
            continue
        category_name = line.category.name if line.category is not None else None
        account_ref = await resolver.resolve_expense_account(category_name)
        built.append(
            _account_expense_line(
                line.description,
                amounts,
                account_ref,
                customer_ref if billable else None,
            )
        )

    if not built and fallback_amount is not None:
        amounts = compute_line_amounts(ONE, fallback_amount)
        if amounts.amount != ZERO:
            account_ref = await resolver.resolve_expense_account(None)
            built.append(_account_expense_line(fallback_description, amounts, account_ref, None))
    return built


async def build_sales_lines(
    lines: Sequence[InvoiceLineItems | EstimateLineItems],
    *,
    resolver: "EntityResolver",
    tax_amount: Any = None,
    fallback_amount: Any = None,
    fallback_description: Optional[str] = None,
) -> list[dict[str, Any]]:
    built: list[dict[str, Any]] = []
    for line in lines:
        amounts = compute_line_amounts(line.quantity, line.total)
        if amounts.amount == ZERO:
            continue
        item_id = None
        if line.product_id is not None:
            item_id = await resolver.resolve_product_item(line.product_id)
        description = line.description or line.product_name
        built.append(_sales_line(description, amounts, item_id))

    if not built and fallback_amount is not None:
        amounts = compute_line_amounts(ONE, fallback_amount)
        if amounts.amount != ZERO:
            built.append(_sales_line(fallback_description, amounts, None))

    tax = to_decimal(tax_amount).quantize(CENT, rounding=ROUND_HALF_UP)
    if tax > ZERO:
        built.append(_sales_line("Sales Tax", compute_line_amounts(ONE, tax), None))
    return built


def _item_expense_line(
    description: Optional[str],
    amounts: LineAmounts,
    item_id: str,
    customer_ref: Optional[dict[str, str]],
) -> dict[str, Any]:
    detail: dict[str, Any] = {
        "ItemRef": {"value": item_id},
        "Qty": _number(amounts.quantity),
        "UnitPrice": _number(amounts.unit_price),
        "BillableStatus": "Billable",
    }
    if customer_ref:
        detail["CustomerRef"] = customer_ref
    line: dict[str, Any] = {
        "DetailType": "ItemBasedExpenseLineDetail",
        "Amount": _number(amounts.amount),
        "ItemBasedExpenseLineDetail": detail,
    }
    if description:
        line["Description"] = description
    return line


def _account_expense_line(
    description: Optional[str],
    amounts: LineAmounts,
    account_ref: dict[str, str],
    customer_ref: Optional[dict[str, str]],
) -> dict[str, Any]:
    detail: dict[str, Any] = {
        "AccountRef": account_ref,
        "BillableStatus": "Billable" if customer_ref else "NotBillable",
    }
    if customer_ref:
        detail["CustomerRef"] = customer_ref
    line: dict[str, Any] = {
        "DetailType": "AccountBasedExpenseLineDetail",
        "Amount": _number(amounts.amount),
        "AccountBasedExpenseLineDetail": detail,
    }
    if description:
        line["Description"] = description
    return line


def _sales_line(
    description: Optional[str],
    amounts: LineAmounts,
    item_id: Optional[str],
) -> dict[str, Any]:
    detail: dict[str, Any] = {
        "Qty": _number(amounts.quantity),
        "UnitPrice": _number(amounts.unit_price),
        "TaxCodeRef": dict(NON_TAXABLE),
    }
    if item_id:
        detail["ItemRef"] = {"value": item_id}
    line: dict[str, Any] = {
        "DetailType": "SalesItemLineDetail",
        "Amount": _number(amounts.amount),
        "SalesItemLineDetail": detail,
    }
    if description:
        line["Description"] = description
    return line
