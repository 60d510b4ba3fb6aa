"""
Bill computation for food and liquor lines.

Lines whose VAT rate is above zero are liquor, everything else is food. Discount and
service charge are applied per bucket, and each line's taxes are charged on its
proportional share of the bucket's taxable amount using the line's own rates.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0')


def to_money(value) -> Decimal:
    """Round a value to 2 decimal places, halves away from zero"""
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CartLine:
    unit_price: Decimal
    quantity: int
    cgst_rate: Decimal = ZERO
    sgst_rate: Decimal = ZERO
    vat_rate: Decimal = ZERO

    @property
    def is_liquor(self) -> bool:
        return self.vat_rate > 0

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class BillBreakdown:
    food_subtotal: Decimal
    liquor_subtotal: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    service_charge: Decimal
    cgst_total: Decimal
    sgst_total: Decimal
    vat_total: Decimal
    grand_total: Decimal

    def as_dict(self):
        return {
            'food_subtotal': self.food_subtotal,
            'liquor_subtotal': self.liquor_subtotal,
            'subtotal': self.subtotal,
            'discount_amount': self.discount_amount,
            'service_charge': self.service_charge,
            'cgst_total': self.cgst_total,
            'sgst_total': self.sgst_total,
            'vat_total': self.vat_total,
            'grand_total': self.grand_total,
        }


def _share(amount: Decimal, bucket_subtotal: Decimal) -> Decimal:
    # An empty bucket contributes nothing rather than dividing by zero
    if bucket_subtotal == 0:
        return ZERO
    return amount / bucket_subtotal


def compute_bill(lines: Iterable[CartLine], discount_rate=ZERO, service_charge_rate=ZERO) -> BillBreakdown:
    """
    Compute subtotal, discount, service charge and tax totals for a cart

    Args:
        lines: Cart lines with unit price, quantity and percentage tax rates
        discount_rate: Discount percentage applied to each bucket subtotal
        service_charge_rate: Service charge percentage applied to each discounted bucket

    Returns:
        BillBreakdown with every money figure rounded to 2 decimal places
    """
    lines: List[CartLine] = list(lines)
    discount_rate = Decimal(discount_rate)
    service_charge_rate = Decimal(service_charge_rate)

    food_subtotal = sum((line.amount for line in lines if not line.is_liquor), ZERO)
    liquor_subtotal = sum((line.amount for line in lines if line.is_liquor), ZERO)

    food_discount = food_subtotal * discount_rate / 100
    liquor_discount = liquor_subtotal * discount_rate / 100

    food_service_charge = (food_subtotal - food_discount) * service_charge_rate / 100
    liquor_service_charge = (liquor_subtotal - liquor_discount) * service_charge_rate / 100

    taxable_food = food_subtotal - food_discount + food_service_charge
    taxable_liquor = liquor_subtotal - liquor_discount + liquor_service_charge

    cgst_total = sgst_total = vat_total = ZERO
    for line in lines:
        if line.is_liquor:
            line_taxable = taxable_liquor * _share(line.amount, liquor_subtotal)
        else:
            line_taxable = taxable_food * _share(line.amount, food_subtotal)

        cgst_total += line_taxable * line.cgst_rate / 100
        sgst_total += line_taxable * line.sgst_rate / 100
        vat_total += line_taxable * line.vat_rate / 100

    grand_total = taxable_food + taxable_liquor + cgst_total + sgst_total + vat_total

    return BillBreakdown(
        food_subtotal=to_money(food_subtotal),
        liquor_subtotal=to_money(liquor_subtotal),
        subtotal=to_money(food_subtotal + liquor_subtotal),
        discount_amount=to_money(food_discount + liquor_discount),
        service_charge=to_money(food_service_charge + liquor_service_charge),
        cgst_total=to_money(cgst_total),
        sgst_total=to_money(sgst_total),
        vat_total=to_money(vat_total),
        grand_total=to_money(grand_total),
    )
