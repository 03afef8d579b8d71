"""Points and currency conversion.

Points are the integer ledger unit of the program. One point is worth
``POINT_VALUE_BRL`` reais, read once from ``settings.point_value_brl``.
"""
import math
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from loguru import logger

from config.settings import settings

DEFAULT_POINT_VALUE = 0.1

_CENT = Decimal("0.01")


def _to_float(value) -> float:
    """Coerce to float; anything unparseable becomes NaN."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def round_currency(value) -> float:
    """Round to cents, halves away from zero. Non-finite input gives 0.0."""
    number = _to_float(value)
    if not math.isfinite(number):
        return 0.0
    try:
        return float(Decimal(str(number)).quantize(_CENT, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return 0.0


def round_points(value) -> int:
    """Round to the nearest integer (halves up); negative or non-finite gives 0."""
    number = _to_float(value)
    if not math.isfinite(number):
        return 0
    rounded = math.floor(number + 0.5)
    return rounded if rounded >= 0 else 0


def resolve_point_value(raw=None) -> float:
    """Parse a configured point value.

    Args:
        raw: Configured value (string or number). None or empty uses the default.

    Returns:
        The value rounded to cents, or DEFAULT_POINT_VALUE when it is missing,
        unparseable or not positive.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return DEFAULT_POINT_VALUE
    number = _to_float(raw)
    if math.isfinite(number) and number > 0:
        value = round_currency(number)
        if value > 0:
            return value
    logger.warning(f"Ignoring invalid point value {raw!r}, using {DEFAULT_POINT_VALUE}")
    return DEFAULT_POINT_VALUE


POINT_VALUE_BRL = resolve_point_value(settings.point_value_brl)


def points_to_brl(points) -> float:
    """Currency value of ``points``; unparseable input is worth 0."""
    number = _to_float(points)
    if not math.isfinite(number):
        return 0.0
    return round_currency(number * POINT_VALUE_BRL)


def brl_to_points(value) -> int:
    """Points bought by a currency ``value``, rounded; unparseable gives 0."""
    number = _to_float(value)
    if not math.isfinite(number):
        return 0
    return round_points(number / POINT_VALUE_BRL)
