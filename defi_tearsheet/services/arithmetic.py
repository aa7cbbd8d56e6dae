"""
Null-propagating arithmetic shared by the normalizer, aggregator and projections.
All helpers are total: they never raise and never return a non-finite float.
"""
import math
from typing import Iterable, Optional

Number = Optional[float]

def finite_or_none(value: Number) -> Number:
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None

def safe_ratio(numerator: Number, denominator: Number) -> Number:
    """numerator / denominator, or None unless both exist and denominator > 0."""
    numerator = finite_or_none(numerator)
    denominator = finite_or_none(denominator)
    if numerator is None or denominator is None or denominator <= 0:
        return None
    return finite_or_none(numerator / denominator)

def safe_pct(numerator: Number, denominator: Number) -> Number:
    ratio = safe_ratio(numerator, denominator)
    return finite_or_none(ratio * 100) if ratio is not None else None

def pct_change(current: Number, previous: Number) -> Number:
    """Percent change from previous to current; None when previous is 0 or missing."""
    current = finite_or_none(current)
    previous = finite_or_none(previous)
    if current is None or previous is None or previous == 0:
        return None
    return finite_or_none((current - previous) / previous * 100)

def mean_or_none(values: Iterable[float]) -> Number:
    values = list(values)
    if not values:
        return None
    return finite_or_none(sum(values) / len(values))

def sum_or_none(values: Iterable[float]) -> Number:
    values = list(values)
    if not values:
        return None
    return finite_or_none(sum(values))

def as_number(value) -> Number:
    """Coerces a raw provider value to float; bools and junk become None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return finite_or_none(value)
    return None

def safe_pow(base: Number, exponent: float) -> Number:
    """base ** exponent, None on overflow or a complex result."""
    base = finite_or_none(base)
    if base is None:
        return None
    try:
        result = base ** exponent
    except (OverflowError, ZeroDivisionError):
        return None
    if isinstance(result, complex):
        return None
    return finite_or_none(result)
