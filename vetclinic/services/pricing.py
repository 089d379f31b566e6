"""Line-item and invoice total arithmetic.

Every intermediate amount is rounded to the cent (ROUND_HALF_UP) through
Money, so the stored totals add up exactly:

    total_amount == subtotal + tax_amount
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Tuple
from vetclinic.models.invoice import InvoiceItem
from vetclinic.schemas.invoice import InvoiceItemCreate
from vetclinic.utils.money import Money


@dataclass(frozen=True)
class LineAmounts:
    subtotal: Money
    discount: Money
    tax: Money
    total: Money


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Money
    tax_amount: Money

    @property
    def total_amount(self) -> Money:
        return self.subtotal + self.tax_amount


def price_line(quantity: int, unit_price: Decimal, tax_rate: Decimal, discount_percentage: Decimal) -> LineAmounts:
    subtotal = Money(unit_price) * quantity
    discount = subtotal.percent(discount_percentage)
    taxable = subtotal - discount
    tax = taxable.percent(tax_rate)
    return LineAmounts(subtotal=subtotal, discount=discount, tax=tax, total=taxable + tax)


def total_lines(lines: Iterable[LineAmounts]) -> InvoiceTotals:
    lines = list(lines)
    subtotal = Money.sum(line.subtotal for line in lines)
    # the invoice-level "tax" is what each line adds on top of its
    # subtotal, i.e. tax net of discount
    tax_amount = Money.sum(line.total - line.subtotal for line in lines)
    return InvoiceTotals(subtotal=subtotal, tax_amount=tax_amount)


def build_invoice_items(items: List[InvoiceItemCreate]) -> Tuple[List[InvoiceItem], InvoiceTotals]:
    """Turn validated item payloads into InvoiceItem rows plus the totals
    they add up to. The rows are not attached to any invoice yet."""
    rows = []
    lines = []
    for position, item in enumerate(items):
        amounts = price_line(item.quantity, item.unit_price, item.tax_rate, item.discount_percentage)
        lines.append(amounts)
        rows.append(InvoiceItem(
            position=position,
            item_type=item.item_type,
            description=item.description,
            quantity=item.quantity,
            unit_price_cents=Money(item.unit_price).to_cents(),
            tax_rate=item.tax_rate,
            discount_percentage=item.discount_percentage,
            inventory_item_id=item.inventory_item_id,
            subtotal_cents=amounts.subtotal.to_cents(),
            total_cents=amounts.total.to_cents(),
        ))
    return rows, total_lines(lines)
