"""Sales import parsers.

Two source formats are understood:

- **E-commerce order export**: a CSV whose header carries ``Name``,
  ``Paid at``, ``Discount Code``, ``Lineitem quantity`` and ``Lineitem sku``.
  One order spans several physical rows (one per line item); the rows are
  folded into a single entry whose points come from the SKU rate table.
- **Manual paste**: one sale per line (order, coupon, date, points), with an
  optional header row naming the columns.

Both produce ``RawSaleEntry`` values that the sales engine validates.
"""
import csv
import io
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from loguru import logger

from .errors import ValidationFailed
from .parsing import normalize_header, parse_number, strip_bom
from .points import round_points

EXPORT_REQUIRED_HEADERS = ("name", "paidat", "discountcode", "lineitemquantity", "lineitemsku")

MANUAL_COLUMN_ALIASES = {
    "order_number": ("pedido", "numero", "ordem", "ordernumber", "numeropedido"),
    "cupom": ("cupom", "coupon"),
    "date": ("data", "date"),
    "points": ("pontos", "points", "pontuacao", "pontuacoes", "pontuacaototal"),
}
MANUAL_DEFAULT_COLUMNS = {"order_number": 0, "cupom": 1, "date": 2, "points": 3}

# Control characters except tab
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0a-\x1f]+")
_PAID_AT_ISO_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")


@dataclass
class SkuLine:
    """One line item of an exported order."""
    sku: str
    quantity_raw: str
    quantity: Optional[Union[int, float]]
    points_per_unit: Optional[int]
    points: Optional[int]
    line: int


@dataclass
class RawSaleEntry:
    """One sale as read from the source, before validation.

    ``total_points`` is only set by the export parser, and only when every
    SKU line has a known rate.
    """
    line: int
    order_number: str = ""
    cupom: str = ""
    raw_date: str = ""
    raw_points: str = ""
    total_points: Optional[int] = None
    sku_details: List[SkuLine] = field(default_factory=list)


def detect_delimiter(line: str) -> Optional[str]:
    """Tab, then semicolon, then comma; None when the line has none of them."""
    for delimiter in ("\t", ";", ","):
        if delimiter in line:
            return delimiter
    return None


def _clean_cell(value: Optional[str]) -> str:
    return strip_bom(value or "").strip()


def _number_or_none(value: float) -> Optional[Union[int, float]]:
    if not math.isfinite(value):
        return None
    return int(value) if value.is_integer() else value


# ============================================================
# E-commerce export
# ============================================================

def is_ecommerce_export(text: str) -> bool:
    """Whether the first line is an e-commerce export header."""
    header_line = text.split("\n", 1)[0]
    normalized = normalize_header(header_line)
    return all(header in normalized for header in EXPORT_REQUIRED_HEADERS)


def format_paid_at(value: str) -> str:
    """Turn ``2024-06-05 10:31:00 -0300`` into ``05/06/2024``.

    Values without an ISO date are returned as they are.
    """
    text = _clean_cell(value)
    if not text:
        return ""
    match = _PAID_AT_ISO_RE.search(text)
    if not match:
        return text
    year, month, day = match.groups()
    return f"{day}/{month}/{year}"


def _read_rows(text: str, delimiter: str) -> List[List[str]]:
    """Split delimited text into rows, honouring quoted fields."""
    return list(csv.reader(io.StringIO(text, newline=""), delimiter=delimiter))


def parse_ecommerce_export(text: str, sku_rates: Dict[str, int]) -> List[RawSaleEntry]:
    """Parse an e-commerce order export.

    Args:
        text: Whole file content, header first.
        sku_rates: Active points per unit keyed by lower-cased SKU.

    Returns:
        One entry per order, in order of first appearance.

    Raises:
        ValidationFailed: The file has no rows, lacks a required column or
            holds no order.
    """
    header_line = text.split("\n", 1)[0]
    delimiter = detect_delimiter(header_line) or ","
    rows = _read_rows(text, delimiter)
    if not rows:
        raise ValidationFailed("Arquivo CSV sem conteudo.")

    header = [normalize_header(cell) for cell in rows[0]]

    def column(*aliases: str) -> int:
        for alias in aliases:
            if alias in header:
                return header.index(alias)
        return -1

    name_idx = column("name")
    paid_at_idx = column("paidat")
    coupon_idx = column("discountcode", "discountcodes")
    quantity_idx = column("lineitemquantity")
    sku_idx = column("lineitemsku")
    if min(name_idx, paid_at_idx, coupon_idx, quantity_idx, sku_idx) < 0:
        raise ValidationFailed("Nao foi possivel identificar as colunas obrigatorias do CSV.")

    entries: Dict[str, RawSaleEntry] = {}

    for row_index, cells in enumerate(rows[1:], start=2):
        if not any(_clean_cell(cell) for cell in cells):
            continue

        def cell(index: int) -> str:
            return _clean_cell(cells[index]) if index < len(cells) else ""

        order = cell(name_idx)
        if not order:
            continue

        paid_at = cell(paid_at_idx)
        coupon = cell(coupon_idx)
        quantity_raw = cell(quantity_idx)
        sku = cell(sku_idx)

        entry = entries.get(order)
        if entry is None:
            entry = RawSaleEntry(line=row_index, order_number=order)
            entries[order] = entry
        # First non-empty value wins
        if paid_at and not entry.raw_date:
            entry.raw_date = format_paid_at(paid_at)
        if coupon and not entry.cupom:
            entry.cupom = coupon

        if not sku and not quantity_raw:
            continue

        quantity = parse_number(quantity_raw)
        if not math.isfinite(quantity):
            quantity = parse_number(quantity_raw.replace(",", "."))
        rate = sku_rates.get(sku.lower()) if sku else None
        points = (
            round_points(quantity * rate)
            if rate is not None and math.isfinite(quantity) else None
        )
        entry.sku_details.append(SkuLine(
            sku=sku,
            quantity_raw=quantity_raw,
            quantity=_number_or_none(quantity),
            points_per_unit=rate,
            points=points,
            line=row_index,
        ))

    for entry in entries.values():
        details = entry.sku_details
        if details and all(d.points is not None for d in details):
            entry.total_points = sum(d.points for d in details)
            entry.raw_points = str(entry.total_points)

    if not entries:
        raise ValidationFailed("Nenhum pedido valido foi encontrado no arquivo CSV informado.")

    logger.debug(f"Export parsed: {len(rows) - 1} rows, {len(entries)} orders")
    return list(entries.values())


# ============================================================
# Manual paste
# ============================================================

def _split_header(line: str, delimiter: Optional[str]) -> List[str]:
    if delimiter:
        return next(csv.reader([line], delimiter=delimiter), [])
    return line.split()


def parse_manual_import(text: str) -> List[RawSaleEntry]:
    """Parse manually pasted sales.

    Column order defaults to order, coupon, date, points. The first non-blank
    line is a header when any known column alias occurs in it; header cells
    then map aliases to positions. Data lines are split on the delimiter of
    the line (or of the last delimited line), falling back to whitespace.

    Returns:
        One entry per non-blank data line, numbered by physical line.
    """
    lines = [
        _CONTROL_CHARS_RE.sub("", strip_bom(line)).rstrip()
        for line in text.replace("\r\n", "\n").split("\n")
    ]

    columns = dict(MANUAL_DEFAULT_COLUMNS)
    delimiter: Optional[str] = None
    data_started = False
    entries: List[RawSaleEntry] = []

    for line_number, raw_line in enumerate(lines, start=1):
        line = raw_line.strip()
        if not line:
            continue

        if not data_started:
            data_started = True
            normalized_line = normalize_header(line)
            if any(alias in normalized_line
                   for aliases in MANUAL_COLUMN_ALIASES.values() for alias in aliases):
                delimiter = detect_delimiter(line)
                headers = [normalize_header(h) for h in _split_header(line, delimiter)]
                for column_name, aliases in MANUAL_COLUMN_ALIASES.items():
                    for index, header in enumerate(headers):
                        if header in aliases:
                            columns[column_name] = index
                            break
                continue

        delimiter = detect_delimiter(line) or delimiter
        cells = line.split(delimiter) if delimiter else line.split()

        def cell(column_name: str) -> str:
            index = columns[column_name]
            return _clean_cell(cells[index]) if index < len(cells) else ""

        entries.append(RawSaleEntry(
            line=line_number,
            order_number=cell("order_number"),
            cupom=cell("cupom"),
            raw_date=cell("date"),
            raw_points=cell("points"),
        ))

    return entries
