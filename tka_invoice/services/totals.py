from collections.abc import Mapping
from datetime import datetime
from decimal import (Decimal, InvalidOperation, ROUND_CEILING, ROUND_FLOOR,
                     ROUND_HALF_UP, localcontext)

# Regulatory carve-out: a fractional VAT of exactly .49 is rounded down
SPECIAL_ROUNDING_FRACTION = Decimal('0.49')
STANDARD_ROUNDING_THRESHOLD = Decimal('0.50')

RULE_SPECIAL = 'Special rule: .49 rounds down'
RULE_ROUND_UP = 'Standard rule: .50+ rounds up'
RULE_STANDARD = 'Standard rounding'

CENTS = Decimal('0.01')

# Line sums of 100 lines at the maximum price and quantity need ~20 digits
_PRECISION = 50


class InvalidTotalsInput(ValueError):
    """Raised when a price, quantity or VAT rate cannot enter the calculation."""
    status_code = 400


def _to_decimal(value, name):
    if value is None:
        raise InvalidTotalsInput(f'{name} is required')
    if isinstance(value, bool):
        raise InvalidTotalsInput(f'{name} must be a number, got {value!r}')
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidTotalsInput(f'{name} must be a number, got {value!r}')
    if not number.is_finite():
        raise InvalidTotalsInput(f'{name} must be finite, got {value!r}')
    if number < 0:
        raise InvalidTotalsInput(f'{name} cannot be negative, got {value!r}')
    return number


def _line_values(line):
    """Extract (unit_price, quantity) from a model, mapping or pair."""
    if isinstance(line, Mapping):
        return line.get('unit_price'), line.get('quantity')
    if isinstance(line, (tuple, list)):
        if len(line) != 2:
            raise InvalidTotalsInput(f'Line pair must be (unit_price, quantity), got {line!r}')
        return line[0], line[1]
    return getattr(line, 'unit_price', None), getattr(line, 'quantity', None)


def calculate_line_total(quantity, unit_price):
    """
    Calculate total for an invoice line.

    Args:
        quantity: Number of units (int, Decimal or numeric string)
        unit_price: Price per unit (Decimal, float or numeric string)

    Returns:
        Decimal: Exact product, not rounded
    """
    quantity = _to_decimal(quantity, 'quantity')
    unit_price = _to_decimal(unit_price, 'unit_price')

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return unit_price * quantity


def calculate_subtotal(lines):
    """
    Calculate subtotal from invoice lines.

    Args:
        lines: Iterable of lines exposing unit_price and quantity

    Returns:
        Decimal: Exact sum of line products (0 for no lines)
    """
    subtotal = Decimal('0')
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        for line in lines:
            unit_price, quantity = _line_values(line)
            subtotal += calculate_line_total(quantity, unit_price)
    return subtotal


def _apply_rounding_rule(raw_vat):
    integer_part = raw_vat.to_integral_value(rounding=ROUND_FLOOR)
    fractional = raw_vat - integer_part

    if fractional == SPECIAL_ROUNDING_FRACTION:
        return integer_part, RULE_SPECIAL
    if fractional >= STANDARD_ROUNDING_THRESHOLD:
        return raw_vat.to_integral_value(rounding=ROUND_CEILING), RULE_ROUND_UP
    # ROUND_HALF_UP rounds half away from zero
    return raw_vat.to_integral_value(rounding=ROUND_HALF_UP), RULE_STANDARD


def _raw_vat(subtotal, vat_percentage):
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return subtotal * vat_percentage / Decimal('100')


def calculate_vat_amount(subtotal, vat_percentage):
    """
    Calculate the whole-rupiah VAT amount for a subtotal.

    Args:
        subtotal: Invoice subtotal
        vat_percentage: VAT rate as percentage (e.g. 11.00)

    Returns:
        Decimal: VAT rounded to an integer under the .49 rule
    """
    subtotal = _to_decimal(subtotal, 'subtotal')
    vat_percentage = _to_decimal(vat_percentage, 'vat_percentage')

    vat_amount, _ = _apply_rounding_rule(_raw_vat(subtotal, vat_percentage))
    return vat_amount


def compute_totals(lines, vat_percentage):
    """
    Compute the invoice aggregate from its lines.

    Pure function: nothing is persisted, callers write the result inside
    the transaction that changed the lines.

    Args:
        lines: Iterable of lines exposing unit_price and quantity
        vat_percentage: The invoice's stored VAT rate

    Returns:
        dict: subtotal, vat_amount and total as Decimals
    """
    vat_percentage = _to_decimal(vat_percentage, 'vat_percentage')
    subtotal = calculate_subtotal(lines)
    vat_amount = calculate_vat_amount(subtotal, vat_percentage)

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        total = subtotal + vat_amount

    return {
        'subtotal': subtotal,
        'vat_amount': vat_amount,
        'total': total
    }


def vat_breakdown(subtotal, vat_percentage):
    """Explain how the VAT figure for a subtotal was reached."""
    subtotal = _to_decimal(subtotal, 'subtotal')
    vat_percentage = _to_decimal(vat_percentage, 'vat_percentage')

    raw_vat = _raw_vat(subtotal, vat_percentage)
    integer_part = raw_vat.to_integral_value(rounding=ROUND_FLOOR)
    vat_amount, rule = _apply_rounding_rule(raw_vat)

    return {
        'subtotal': subtotal,
        'vat_percentage': vat_percentage,
        'raw_vat': raw_vat,
        'integer_part': integer_part,
        'fractional_part': raw_vat - integer_part,
        'vat_amount': vat_amount,
        'difference': vat_amount - raw_vat,
        'rounding_rule': rule,
        'total': subtotal + vat_amount
    }


def apply_invoice_totals(invoice, lines=None):
    """
    Recalculate the aggregate for an invoice and write it onto the object.

    Uses the invoice's own stored vat_percentage so historical invoices do
    not move when the default rate changes. Does not commit.

    Args:
        invoice: Invoice object
        lines: Lines to use instead of invoice.lines

    Returns:
        dict: Dictionary with subtotal, vat_amount, and total
    """
    if lines is None:
        lines = invoice.lines

    totals = compute_totals(lines, invoice.vat_percentage)

    invoice.subtotal = totals['subtotal'].quantize(CENTS, rounding=ROUND_HALF_UP)
    invoice.vat_amount = totals['vat_amount'].quantize(CENTS, rounding=ROUND_HALF_UP)
    invoice.total_amount = totals['total'].quantize(CENTS, rounding=ROUND_HALF_UP)
    invoice.updated_at = datetime.utcnow()

    return totals


def totals_are_consistent(invoice):
    """Check the stored aggregate against a fresh computation from the lines."""
    totals = compute_totals(invoice.lines, invoice.vat_percentage)
    stored = (
        Decimal(str(invoice.subtotal or 0)),
        Decimal(str(invoice.vat_amount or 0)),
        Decimal(str(invoice.total_amount or 0)),
    )
    expected = (
        totals['subtotal'].quantize(CENTS, rounding=ROUND_HALF_UP),
        totals['vat_amount'].quantize(CENTS, rounding=ROUND_HALF_UP),
        totals['total'].quantize(CENTS, rounding=ROUND_HALF_UP),
    )
    return all(abs(s - e) < CENTS for s, e in zip(stored, expected))
