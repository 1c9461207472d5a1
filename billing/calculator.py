from dataclasses import asdict, dataclass
from decimal import Decimal

from common.errors import ValidationError
from common.utils import ZERO, to_decimal, to_money

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class InvoiceCalculation:
    labor_cost: Decimal
    parts_cost: Decimal
    subtotal: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    def as_dict(self):
        return asdict(self)


def calculate_invoice(labor_cost, parts_cost, discount=0, discount_percentage=0, tax_rate=0) -> InvoiceCalculation:
    """Compute invoice totals in fixed-point money.

    A positive ``discount_percentage`` wins over the flat ``discount``. Discount
    and tax are rounded half-up to the cent before they are combined, so
    ``subtotal - discount_amount + tax_amount == total_amount`` holds exactly.
    """
    labor_cost = to_money(labor_cost)
    parts_cost = to_money(parts_cost)
    discount = to_decimal(discount)
    discount_percentage = to_decimal(discount_percentage)
    tax_rate = to_decimal(tax_rate)

    if labor_cost < ZERO or parts_cost < ZERO:
        raise ValidationError("Costs cannot be negative")
    if discount < ZERO or discount_percentage < ZERO:
        raise ValidationError("Discount cannot be negative")
    if discount_percentage > HUNDRED:
        raise ValidationError("Discount percentage cannot exceed 100")
    if tax_rate < ZERO:
        raise ValidationError("Tax rate cannot be negative")

    subtotal = labor_cost + parts_cost
    if discount_percentage > ZERO:
        discount_amount = to_money(subtotal * discount_percentage / HUNDRED)
    else:
        discount_amount = to_money(discount)
    if discount_amount > subtotal:
        raise ValidationError("Discount cannot exceed the subtotal")

    taxable_amount = subtotal - discount_amount
    tax_amount = to_money(taxable_amount * tax_rate / HUNDRED)

    return InvoiceCalculation(
        labor_cost=labor_cost,
        parts_cost=parts_cost,
        subtotal=subtotal,
        discount_percentage=to_money(discount_percentage),
        discount_amount=discount_amount,
        taxable_amount=taxable_amount,
        tax_rate=to_money(tax_rate),
        tax_amount=tax_amount,
        total_amount=taxable_amount + tax_amount,
    )
