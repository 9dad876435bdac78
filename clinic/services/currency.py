"""Currency display helpers shared by invoices, payments and reports."""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CURRENCY_SYMBOLS = {
    'MYR': 'RM',
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
    'SGD': 'S$',
    'JPY': '¥',
    'AUD': 'A$',
    'CAD': 'C$',
    'CNY': '¥',
    'THB': '฿',
    'IDR': 'Rp',
}

_NON_NUMERIC = re.compile(r'[^\d.-]')


def get_currency_symbol(currency_code: str) -> str:
    return CURRENCY_SYMBOLS.get(currency_code.upper(), currency_code)


def format_currency(amount, currency_code: str = 'MYR', *, minimum_fraction_digits: int = 2,
                    maximum_fraction_digits: int = 2, show_symbol: bool = True) -> str:
    """Format ``amount`` with thousands separators, e.g. ``RM1,234.50``."""
    value = Decimal(str(amount)).quantize(Decimal(1).scaleb(-maximum_fraction_digits), rounding=ROUND_HALF_UP)
    text = f"{value:,.{maximum_fraction_digits}f}"
    if maximum_fraction_digits > minimum_fraction_digits:
        whole, _, frac = text.partition('.')
        frac = frac.rstrip('0').ljust(minimum_fraction_digits, '0')
        text = f"{whole}.{frac}" if frac else whole
    if not show_symbol:
        return text
    return f"{get_currency_symbol(currency_code)}{text}"


def parse_currency(currency_string: str) -> Decimal:
    """Parse ``'RM10.50'`` or ``'10.50'``; anything unparseable is zero."""
    try:
        return Decimal(_NON_NUMERIC.sub('', currency_string or ''))
    except InvalidOperation:
        return Decimal('0')


def format_currency_compact(amount, currency_code: str = 'MYR') -> str:
    amount = Decimal(str(amount))
    if amount >= 1_000_000:
        return format_currency(amount / 1_000_000, currency_code, minimum_fraction_digits=0, maximum_fraction_digits=1) + 'M'
    if amount >= 1000:
        return format_currency(amount / 1000, currency_code, minimum_fraction_digits=0, maximum_fraction_digits=1) + 'K'
    return format_currency(amount, currency_code)
