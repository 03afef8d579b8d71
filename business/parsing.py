"""Text, number and date helpers shared by the planner and the sales engine."""
import math
import re
import unicodedata
from datetime import date, datetime
from typing import Any, Optional

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SALE_DATE_RE = re.compile(
    r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2,4})(?:\s+(\d{1,2}):(\d{2}))?$"
)
_LEADING_BOM_RE = re.compile("^[\ufeff\u200b]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")

_TRUE_FLAGS = {"1", "true", "yes", "y", "on", "add", "append", "novo", "nova", "create"}

INVALID_SALE_DATE = "Data invalida. Use o formato DD/MM/AAAA."
MISSING_SALE_DATE = "Informe a data da venda."


def strip_bom(value: Optional[str]) -> str:
    """Drop leading byte-order and zero-width marks."""
    if not value:
        return ""
    return _LEADING_BOM_RE.sub("", value)


def normalize_header(value: Any) -> str:
    """Lower-case, strip accents and keep only ``[a-z0-9]``.

    ``"Lineitem quantity"`` becomes ``"lineitemquantity"`` and
    ``"Pontuação"`` becomes ``"pontuacao"``.
    """
    text = strip_bom(str(value or "")).lower()
    text = unicodedata.normalize("NFD", text)
    return _NON_ALNUM_RE.sub("", text)


def trim_string(value: Any) -> Any:
    """Strip strings; anything else is returned unchanged."""
    return value.strip() if isinstance(value, str) else value


def parse_number(value: Any) -> float:
    """Read a number from user input. Blank or unparseable input gives NaN."""
    if value is None or isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return math.nan
    try:
        return float(text)
    except ValueError:
        return math.nan


def to_positive_int(value: Any) -> Optional[int]:
    """Integer identifiers: ``7`` and ``"7"`` give 7; anything else gives None."""
    number = parse_number(value)
    if not math.isfinite(number) or not number.is_integer() or number <= 0:
        return None
    return int(number)


def parse_boolean_flag(value: Any) -> bool:
    """Loose boolean used by plan entries (``"append"``, ``"novo"``, ``1`` ...)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_FLAGS
    return False


def is_iso_date(value: Any) -> bool:
    """``YYYY-MM-DD`` shape check (no calendar check)."""
    return isinstance(value, str) and bool(ISO_DATE_RE.match(value.strip()))


def parse_iso_date(value: Any) -> Optional[date]:
    """Parse a ``YYYY-MM-DD`` string into a date.

    Returns:
        The date, or None for a malformed or calendar-invalid value
        such as ``"2024-07-40"``. Date objects are returned unchanged.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not is_iso_date(value):
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def parse_points_field(value: Any, label: str = "Pontos") -> int:
    """Parse a non-negative whole number of points.

    Raises:
        ValueError: With the message shown to the operator.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"{label} deve ser informado.")
    number = parse_number(value)
    if not math.isfinite(number) or number < 0:
        raise ValueError(f"{label} deve ser um numero inteiro maior ou igual a zero.")
    rounded = math.floor(number + 0.5)
    if abs(rounded - number) > 0.0001:
        raise ValueError(f"{label} deve ser um numero inteiro.")
    return int(rounded)


def parse_sale_date(value: Any) -> date:
    """Parse an imported sale date.

    Accepts ``D/M/YYYY`` and ``DD/MM/YYYY`` (``-`` also separates), a two digit
    year meaning 20xx and an optional trailing ``HH:MM`` that is ignored.

    Raises:
        ValueError: With the message shown to the operator.
    """
    text = strip_bom(str(value)).strip() if value else ""
    if not text:
        raise ValueError(MISSING_SALE_DATE)

    match = SALE_DATE_RE.match(text)
    if not match:
        raise ValueError(INVALID_SALE_DATE)

    day, month, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
    if year < 100:
        year += 2000
    if not (1 <= day <= 31 and 1 <= month <= 12) or year < 1900:
        raise ValueError(INVALID_SALE_DATE)
    try:
        return date(year, month, day)
    except ValueError:
        raise ValueError(INVALID_SALE_DATE) from None
