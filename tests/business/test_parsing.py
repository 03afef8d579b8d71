"""Text, number and date helper tests."""
import math
from datetime import date

import pytest

from business.parsing import (
    INVALID_SALE_DATE, MISSING_SALE_DATE, normalize_header, parse_boolean_flag,
    parse_iso_date, parse_number, parse_points_field, parse_sale_date,
    strip_bom, to_positive_int,
)


class TestNormalizeHeader:
    def test_strips_accents_and_symbols(self):
        assert normalize_header("Pontuação") == "pontuacao"
        assert normalize_header("Lineitem quantity") == "lineitemquantity"
        assert normalize_header("\ufeffName") == "name"
        assert normalize_header(None) == ""


class TestNumbers:
    def test_parse_number(self):
        assert parse_number(" 3.5 ") == 3.5
        assert parse_number(4) == 4.0
        assert math.isnan(parse_number(""))
        assert math.isnan(parse_number("3,5"))
        assert math.isnan(parse_number(True))

    @pytest.mark.parametrize("value, expected", [
        (7, 7), ("7", 7), (7.0, 7), (0, None), (-1, None), ("7.5", None), ("x", None), (None, None),
    ])
    def test_to_positive_int(self, value, expected):
        assert to_positive_int(value) == expected

    @pytest.mark.parametrize("value, expected", [
        (True, True), ("append", True), ("Novo", True), (1, True),
        ("no", False), (0, False), (None, False),
    ])
    def test_parse_boolean_flag(self, value, expected):
        assert parse_boolean_flag(value) is expected


class TestPointsField:
    def test_accepts_whole_numbers(self):
        assert parse_points_field("40") == 40
        assert parse_points_field(12.00001) == 12

    def test_missing(self):
        with pytest.raises(ValueError, match="deve ser informado"):
            parse_points_field("  ")

    @pytest.mark.parametrize("value", ["-1", "abc"])
    def test_negative_or_text(self, value):
        with pytest.raises(ValueError, match="maior ou igual a zero"):
            parse_points_field(value)

    def test_fraction(self):
        with pytest.raises(ValueError, match="numero inteiro\\.$"):
            parse_points_field("10.5")


class TestDates:
    def test_parse_iso_date(self):
        assert parse_iso_date("2024-06-05") == date(2024, 6, 5)
        assert parse_iso_date(date(2024, 6, 5)) == date(2024, 6, 5)
        assert parse_iso_date("2024-07-40") is None
        assert parse_iso_date("05/06/2024") is None
        assert parse_iso_date(None) is None

    @pytest.mark.parametrize("value, expected", [
        ("05/06/2024", date(2024, 6, 5)),
        ("5/6/2024", date(2024, 6, 5)),
        ("05-06-24", date(2024, 6, 5)),
        ("05/06/2024 10:31", date(2024, 6, 5)),
    ])
    def test_parse_sale_date(self, value, expected):
        assert parse_sale_date(value) == expected

    @pytest.mark.parametrize("value", ["2024-06-05", "31/02/2024", "00/06/2024", "05/13/2024"])
    def test_parse_sale_date_invalid(self, value):
        with pytest.raises(ValueError, match=INVALID_SALE_DATE):
            parse_sale_date(value)

    def test_parse_sale_date_missing(self):
        with pytest.raises(ValueError, match=MISSING_SALE_DATE):
            parse_sale_date("")

    def test_strip_bom(self):
        assert strip_bom("\ufeff\u200bpedido") == "pedido"
        assert strip_bom(None) == ""
