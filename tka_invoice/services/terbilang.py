"""Indonesian amount-in-words ("terbilang") for printed invoices."""
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP

ONES = ['', 'satu', 'dua', 'tiga', 'empat', 'lima', 'enam', 'tujuh', 'delapan', 'sembilan']

TEENS = ['sepuluh', 'sebelas', 'dua belas', 'tiga belas', 'empat belas',
         'lima belas', 'enam belas', 'tujuh belas', 'delapan belas', 'sembilan belas']

TENS = ['', '', 'dua puluh', 'tiga puluh', 'empat puluh', 'lima puluh',
        'enam puluh', 'tujuh puluh', 'delapan puluh', 'sembilan puluh']

SCALES = ['', 'ribu', 'juta', 'miliar', 'triliun', 'kuadriliun']


def _hundreds_to_words(number):
    words = []

    hundreds, rest = divmod(number, 100)
    if hundreds == 1:
        words.append('seratus')
    elif hundreds > 1:
        words.append(f'{ONES[hundreds]} ratus')

    if rest >= 20:
        tens, ones = divmod(rest, 10)
        words.append(TENS[tens])
        if ones:
            words.append(ONES[ones])
    elif rest >= 10:
        words.append(TEENS[rest - 10])
    elif rest > 0:
        words.append(ONES[rest])

    return ' '.join(words)


def _integer_to_words(number):
    groups = []
    while number > 0:
        number, group = divmod(number, 1000)
        groups.append(group)

    if len(groups) > len(SCALES):
        raise ValueError('Number too large to spell out')

    parts = []
    for scale_index in range(len(groups) - 1, -1, -1):
        group = groups[scale_index]
        if group == 0:
            continue
        if scale_index == 1 and group == 1:
            parts.append('seribu')
        elif scale_index == 0:
            parts.append(_hundreds_to_words(group))
        else:
            parts.append(f'{_hundreds_to_words(group)} {SCALES[scale_index]}')

    return ' '.join(parts)


def number_to_words(number):
    """
    Spell out a number in Indonesian.

    Args:
        number: int, Decimal or numeric string. Fractions are spelled to two
            places after "koma".

    Returns:
        str: e.g. 1500 -> "seribu lima ratus"
    """
    value = Decimal(str(number))
    if value == 0:
        return 'nol'
    if value < 0:
        return 'minus ' + number_to_words(-value)

    integer_part = int(value.to_integral_value(rounding=ROUND_FLOOR))
    cents = int(((value - integer_part) * 100).to_integral_value(rounding=ROUND_HALF_UP))

    words = _integer_to_words(integer_part) if integer_part else 'nol'
    if cents:
        words += ' koma ' + _integer_to_words(cents)
    return words


def amount_to_words(amount):
    """Capitalised words for the whole-rupiah part of an amount, e.g. "Seratus ribu Rupiah"."""
    integer_part = Decimal(str(amount)).to_integral_value(rounding=ROUND_FLOOR)
    words = number_to_words(integer_part)
    return words[0].upper() + words[1:] + ' Rupiah'
