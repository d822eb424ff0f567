"""
GST tax and invoice totals.

Pure functions, no I/O. Place of supply decides the split: seller and buyer in
the same state pay CGST + SGST (half the rate each), different or unknown
states pay IGST at the full rate.

Every intermediate amount is rounded to two places (ROUND_HALF_UP).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from core.exceptions import InvalidStateError, ValidationError
from core.models.invoice import Invoice, InvoiceStatus, LineItem, TaxBreakdown
from core.models.rules import CompoundingFrequency, LateFeeRule, LateFeeType
from utils.money import ZERO, percent_of, round2, to_decimal
from utils.timezone import now_utc

_COMPOUNDING_PERIODS = {
    CompoundingFrequency.DAILY: timedelta(days=1),
    CompoundingFrequency.WEEKLY: timedelta(days=7),
    CompoundingFrequency.MONTHLY: timedelta(days=30),
}


@dataclass(frozen=True)
class InvoiceTotals:
    """Result of compute_invoice_totals."""

    items_total: Decimal
    discount_amount: Decimal
    subtotal: Decimal
    tax_breakdown: TaxBreakdown
    total_amount: Decimal


def compute_line_totals(quantity, unit_price, tax_rate) -> tuple[Decimal, Decimal]:
    """
    Line total and line tax.

    Returns:
        (round2(quantity * unit_price), round2(total_price * tax_rate / 100))
    """
    total_price = round2(to_decimal(quantity) * to_decimal(unit_price))
    return total_price, percent_of(total_price, tax_rate)


def is_inter_state(seller_state_code: str | None, buyer_state_code: str | None) -> bool:
    """Unknown place of supply on either side is treated as inter-state."""
    if not seller_state_code or not buyer_state_code:
        return True
    return seller_state_code != buyer_state_code


def compute_tax_breakdown(
    subtotal,
    rate,
    seller_state_code: str | None,
    buyer_state_code: str | None,
) -> TaxBreakdown:
    """
    GST breakdown for a taxable value at one rate.

    Intra-state: CGST and SGST are each round2(tax / 2) so the two halves are
    always equal and total_tax_amount is exactly their sum.
    """
    rate = to_decimal(rate)
    tax = percent_of(subtotal, rate)

    if is_inter_state(seller_state_code, buyer_state_code):
        return TaxBreakdown(
            igst_rate=rate,
            igst_amount=tax,
            total_tax_amount=tax,
            is_inter_state=True,
        )

    half = round2(tax / 2)
    return TaxBreakdown(
        cgst_rate=rate / 2,
        cgst_amount=half,
        sgst_rate=rate / 2,
        sgst_amount=half,
        total_tax_amount=round2(half * 2),
        is_inter_state=False,
    )


def combine_breakdowns(breakdowns: list[TaxBreakdown], taxable_value: Decimal) -> TaxBreakdown:
    """
    Sum per-rate breakdowns into one.

    With a single rate the rate fields carry through. With mixed rates they
    hold the effective rate over the whole taxable value.
    """
    if not breakdowns:
        return TaxBreakdown()

    inter = breakdowns[0].is_inter_state
    cgst = round2(sum((b.cgst_amount for b in breakdowns), ZERO))
    sgst = round2(sum((b.sgst_amount for b in breakdowns), ZERO))
    igst = round2(sum((b.igst_amount for b in breakdowns), ZERO))
    total = round2(cgst + sgst + igst)

    if len(breakdowns) == 1:
        rate = breakdowns[0].igst_rate if inter else breakdowns[0].cgst_rate * 2
    elif taxable_value > 0:
        rate = round2(total * 100 / taxable_value)
    else:
        rate = ZERO

    if inter:
        return TaxBreakdown(
            igst_rate=rate, igst_amount=igst, total_tax_amount=total, is_inter_state=True,
        )
    return TaxBreakdown(
        cgst_rate=rate / 2,
        cgst_amount=cgst,
        sgst_rate=rate / 2,
        sgst_amount=sgst,
        total_tax_amount=total,
        is_inter_state=False,
    )


def compute_discount(items_total, discount_percentage=ZERO, discount_amount=ZERO) -> Decimal:
    """
    Resolve the invoice discount.

    An explicit amount wins over a percentage.

    Raises:
        ValidationError: If the discount exceeds the line items total
    """
    items_total = to_decimal(items_total)
    discount_amount = to_decimal(discount_amount or ZERO)
    if discount_amount > 0:
        discount = round2(discount_amount)
    else:
        discount = percent_of(items_total, discount_percentage or ZERO)

    if discount > items_total:
        raise ValidationError(
            f"Discount {discount} exceeds line items total {items_total}",
            errors=[{"field": "discount_amount", "message": "exceeds line items total"}],
        )
    return discount


def compute_invoice_totals(
    line_items: list[LineItem],
    seller_state_code: str | None,
    buyer_state_code: str | None,
    discount_percentage=ZERO,
    discount_amount=ZERO,
    late_fee_applied=ZERO,
) -> InvoiceTotals:
    """
    Totals for a whole invoice.

    Lines are grouped by tax rate. The discount is spread over the groups pro
    rata to their value, the last group absorbing the rounding remainder, and
    each group is taxed on its discounted value.
    """
    items_total = round2(sum((item.total_price for item in line_items), ZERO))
    discount = compute_discount(items_total, discount_percentage, discount_amount)

    groups: dict[Decimal, Decimal] = {}
    for item in line_items:
        rate = to_decimal(item.tax_rate)
        groups[rate] = round2(groups.get(rate, ZERO) + item.total_price)

    breakdowns = []
    allocated = ZERO
    rates = list(groups)
    for index, rate in enumerate(rates):
        group_total = groups[rate]
        if index == len(rates) - 1:
            share = round2(discount - allocated)
        elif items_total > 0:
            share = round2(discount * group_total / items_total)
        else:
            share = ZERO
        allocated = round2(allocated + share)
        breakdowns.append(
            compute_tax_breakdown(
                round2(group_total - share), rate, seller_state_code, buyer_state_code
            )
        )

    subtotal = round2(items_total - discount)
    breakdown = combine_breakdowns(breakdowns, subtotal)
    total = round2(subtotal + breakdown.total_tax_amount + to_decimal(late_fee_applied))

    return InvoiceTotals(
        items_total=items_total,
        discount_amount=discount,
        subtotal=subtotal,
        tax_breakdown=breakdown,
        total_amount=total,
    )


def compute_late_fee(balance, rule: LateFeeRule) -> Decimal:
    """Fee for one application of a rule against an outstanding balance."""
    balance = to_decimal(balance)
    if balance <= 0:
        return ZERO

    if rule.type == LateFeeType.PERCENTAGE:
        fee = percent_of(balance, rule.amount)
    else:
        fee = round2(rule.amount)

    if rule.max_amount is not None:
        fee = min(fee, round2(rule.max_amount))
    return fee


def compounding_period(frequency: CompoundingFrequency | None) -> timedelta | None:
    """Minimum gap between two applications of a compounding rule."""
    if frequency is None:
        return None
    return _COMPOUNDING_PERIODS[frequency]


def apply_late_fee(
    invoice: Invoice,
    rule: LateFeeRule,
    now: datetime | None = None,
) -> tuple[Invoice, Decimal]:
    """
    Charge a late fee on an overdue invoice.

    The fee is computed on the current balance, which already includes any
    earlier fees, so repeated applications compound.

    Returns:
        (updated invoice, fee charged)

    Raises:
        InvalidStateError: If the invoice is not overdue. The invoice is untouched.
    """
    if invoice.status != InvoiceStatus.OVERDUE:
        raise InvalidStateError(
            f"Late fee can only be applied to overdue invoices "
            f"(invoice {invoice.invoice_number} is {invoice.status.value})",
            current_state=invoice.status.value,
        )

    fee = compute_late_fee(invoice.balance_due, rule)
    if fee == 0:
        return invoice, ZERO

    updated = invoice.evolve(
        total_amount=round2(invoice.total_amount + fee),
        late_fee_applied=round2(invoice.late_fee_applied + fee),
        updated_at=now or now_utc(),
    )
    return updated, fee
