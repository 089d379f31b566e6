from decimal import Decimal

from hypothesis import given, settings as hypothesis_settings, strategies as st

from vetclinic.models.invoice import Invoice
from vetclinic.schemas.invoice import InvoiceItemCreate
from vetclinic.services.pricing import build_invoice_items, price_line, total_lines
from vetclinic.utils.money import Money


def test_price_line_discount_before_tax():
    amounts = price_line(2, Decimal("50.00"), Decimal("20"), Decimal("10"))
    assert amounts.subtotal == Money("100.00")
    assert amounts.discount == Money("10.00")
    assert amounts.tax == Money("18.00")
    assert amounts.total == Money("108.00")


def test_invoice_tax_is_net_of_discount():
    totals = total_lines([
        price_line(1, Decimal("100.00"), Decimal("20"), Decimal("50")),
        price_line(3, Decimal("9.99"), Decimal("0"), Decimal("0")),
    ])
    assert totals.subtotal == Money("129.97")
    # first line: 100 - 50 discount + 10 tax = 60, i.e. -40 on its subtotal
    assert totals.tax_amount == Money("-40.00")
    assert totals.total_amount == Money("89.97")


def test_build_invoice_items_keeps_order_and_cents():
    rows, totals = build_invoice_items([
        InvoiceItemCreate(item_type="service", description="Exam", quantity=1, unit_price=Decimal("45.50"), tax_rate=Decimal("20")),
        InvoiceItemCreate(item_type="medication", description="Carprofen", quantity=4, unit_price=Decimal("1.25"), tax_rate=Decimal("0")),
    ])
    assert [row.position for row in rows] == [0, 1]
    assert rows[0].unit_price_cents == 4550
    assert rows[0].total_cents == 5460
    assert rows[1].subtotal_cents == 500
    assert totals.total_amount == Money("59.60")


items_strategy = st.lists(
    st.builds(
        InvoiceItemCreate,
        item_type=st.sampled_from(["service", "product", "medication", "diagnostic"]),
        description=st.just("line"),
        quantity=st.integers(min_value=1, max_value=500),
        unit_price=st.integers(min_value=0, max_value=1_000_000).map(lambda cents: Decimal(cents) / 100),
        tax_rate=st.decimals(min_value=0, max_value=100, places=2),
        discount_percentage=st.decimals(min_value=0, max_value=100, places=2),
    ),
    min_size=1,
    max_size=12,
)


@hypothesis_settings(max_examples=200, deadline=None)
@given(items=items_strategy, paid_cents=st.integers(min_value=0, max_value=10_000))
def test_financial_identity_holds_for_any_item_set(items, paid_cents):
    rows, totals = build_invoice_items(items)
    invoice = Invoice(amount_paid_cents=0)
    invoice.set_totals(totals.subtotal, totals.tax_amount)

    assert invoice.total_amount_cents == invoice.subtotal_cents + invoice.tax_amount_cents
    assert invoice.subtotal_cents == sum(row.subtotal_cents for row in rows)
    assert invoice.total_amount_cents == sum(row.total_cents for row in rows)
    assert invoice.balance_due_cents == invoice.total_amount_cents

    invoice.apply_payment(Money.from_cents(paid_cents))
    assert invoice.balance_due_cents == invoice.total_amount_cents - invoice.amount_paid_cents
