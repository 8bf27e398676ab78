from __future__ import annotations

import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest

from qbo_sync.services.line_items import (
    build_bill_lines,
    build_sales_lines,
    compute_line_amounts,
    is_billable,
)


class StubResolver:
    def __init__(self) -> None:
        self.categories: list = []
        self.products: list = []

    async def resolve_expense_account(self, category_name):
        self.categories.append(category_name)
        if category_name == "Labor":
            return {"value": "61", "name": "Job Labor"}
        return {"value": "80", "name": "Cost of Goods Sold"}

    async def resolve_product_item(self, product_id):
        self.products.append(product_id)
        return "item-7"


def bill_line(total, quantity="1", category=None, product_id=None, description=None):
    return SimpleNamespace(
        total=Decimal(str(total)),
        quantity=Decimal(str(quantity)),
        category=SimpleNamespace(name=category) if category else None,
        product_id=product_id,
        description=description,
    )


def sales_line(total, quantity="1", product_id=None, description=None, product_name=None):
    return SimpleNamespace(
        total=Decimal(str(total)),
        quantity=Decimal(str(quantity)),
        product_id=product_id,
        product_name=product_name,
        description=description,
    )


def test_unit_price_derived_from_total():
    amounts = compute_line_amounts(Decimal("3"), Decimal("10.00"))

    assert amounts.unit_price == Decimal("3.33333")
    assert amounts.amount == Decimal("10.00")
    assert amounts.quantity == Decimal("3")


@pytest.mark.parametrize("quantity", [0, "-2", None])
def test_non_positive_quantity_becomes_one(quantity):
    amounts = compute_line_amounts(quantity, "42.50")

    assert amounts.quantity == Decimal("1")
    assert amounts.unit_price == Decimal("42.50000")
    assert amounts.amount == Decimal("42.50")


def test_amount_is_rounded_product_of_qty_and_unit_price():
    amounts = compute_line_amounts("7", "100.01")

    assert amounts.amount == (amounts.quantity * amounts.unit_price).quantize(Decimal("0.01"))


def test_large_quantity_keeps_amount_equal_to_total():
    amounts = compute_line_amounts(Decimal("3000"), Decimal("10.00"))

    assert amounts.amount == Decimal("10.00")
    assert amounts.quantity == Decimal("3000")
    assert (amounts.quantity * amounts.unit_price).quantize(Decimal("0.01")) == Decimal("10.00")


def test_unreproducible_total_falls_back_to_single_unit():
    amounts = compute_line_amounts(Decimal("1000000000000"), Decimal("0.01"))

    assert amounts.quantity == Decimal("1")
    assert amounts.unit_price == Decimal("0.01000")
    assert amounts.amount == Decimal("0.01")


def test_labor_category_alone_is_not_billable():
    bill = SimpleNamespace(purchase_order_id=None)
    lines = [bill_line("400", category="Labor"), bill_line("80", category="Equipment")]

    assert not is_billable(bill, lines)


def test_purchase_order_or_product_line_makes_bill_billable():
    lines = [bill_line("400", category="Labor")]

    assert is_billable(SimpleNamespace(purchase_order_id=uuid.uuid4()), lines)
    assert is_billable(
        SimpleNamespace(purchase_order_id=None),
        lines + [bill_line("25", product_id=uuid.uuid4())],
    )


async def test_labor_bill_lines_are_account_based_and_not_billable():
    resolver = StubResolver()
    lines = [bill_line("400", quantity="8", category="Labor", description="Framing crew")]

    built = await build_bill_lines(
        lines,
        billable=False,
        resolver=resolver,
        customer_ref={"value": "55"},
    )

    assert built == [
        {
            "DetailType": "AccountBasedExpenseLineDetail",
            "Amount": 400.0,
            "AccountBasedExpenseLineDetail": {
                "AccountRef": {"value": "61", "name": "Job Labor"},
                "BillableStatus": "NotBillable",
            },
            "Description": "Framing crew",
        }
    ]
    assert resolver.products == []


async def test_billable_bill_mixes_item_and_account_lines():
    resolver = StubResolver()
    product_id = uuid.uuid4()
    lines = [
        bill_line("10.00", quantity="3", product_id=product_id, description="Hinges"),
        bill_line("120", category="Materials"),
    ]

    built = await build_bill_lines(
        lines,
        billable=True,
        resolver=resolver,
        customer_ref={"value": "55"},
    )

    item_line, account_line = built
    assert item_line["DetailType"] == "ItemBasedExpenseLineDetail"
    assert item_line["Amount"] == 10.0
    detail = item_line["ItemBasedExpenseLineDetail"]
    assert detail["ItemRef"] == {"value": "item-7"}
    assert detail["Qty"] == 3.0
    assert detail["UnitPrice"] == 3.33333
    assert detail["BillableStatus"] == "Billable"
    assert detail["CustomerRef"] == {"value": "55"}
    assert account_line["AccountBasedExpenseLineDetail"]["BillableStatus"] == "Billable"
    assert account_line["AccountBasedExpenseLineDetail"]["CustomerRef"] == {"value": "55"}
    assert resolver.products == [product_id]


async def test_zero_amount_lines_are_dropped():
    resolver = StubResolver()
    lines = [bill_line("0", category="Materials"), bill_line("0.004", quantity="1", category="Materials")]

    built = await build_bill_lines(lines, billable=False, resolver=resolver)

    assert built == []
    assert resolver.categories == []


async def test_empty_bill_falls_back_to_single_line():
    resolver = StubResolver()

    built = await build_bill_lines(
        [],
        billable=False,
        resolver=resolver,
        fallback_amount=Decimal("99.95"),
        fallback_description="Bill VB-9",
    )

    assert len(built) == 1
    assert built[0]["Amount"] == 99.95
    assert built[0]["Description"] == "Bill VB-9"
    assert resolver.categories == [None]


async def test_sales_lines_append_tax_line():
    resolver = StubResolver()
    product_id = uuid.uuid4()
    lines = [
        sales_line("250.00", quantity="2", product_id=product_id, product_name="Deck stain"),
        sales_line("0"),
        sales_line("75.50", description="Labor"),
    ]

    built = await build_sales_lines(lines, resolver=resolver, tax_amount=Decimal("26.91"))

    assert [line.get("Description") for line in built] == ["Deck stain", "Labor", "Sales Tax"]
    assert built[0]["SalesItemLineDetail"]["ItemRef"] == {"value": "item-7"}
    assert built[0]["SalesItemLineDetail"]["UnitPrice"] == 125.0
    assert "ItemRef" not in built[1]["SalesItemLineDetail"]
    assert built[2]["Amount"] == 26.91
    assert all(line["SalesItemLineDetail"]["TaxCodeRef"] == {"value": "NON"} for line in built)


async def test_sales_lines_skip_zero_tax():
    built = await build_sales_lines([sales_line("10")], resolver=StubResolver(), tax_amount=Decimal("0"))

    assert len(built) == 1
