"""
Unit tests for number parsing and display formatting.
"""

import pytest
from decimal import Decimal

from fieldsales.utils.formatters import money, percent
from fieldsales.utils.number_format import amount_text, parse_count, parse_decimal, parse_percent


class TestParsing:

    def test_parse_decimal_keeps_exact_value(self):
        assert parse_decimal(0.1) == Decimal('0.1')
        assert parse_decimal('1,234.50') == Decimal('1234.50')

    @pytest.mark.parametrize('value', [None, '', 'abc', '-1', 'NaN', True])
    def test_parse_decimal_rejects(self, value):
        with pytest.raises(ValueError):
            parse_decimal(value, 'price_unit')

    def test_parse_percent(self):
        assert parse_percent('12.5%') == Decimal('12.5')
        assert parse_percent(0) == Decimal('0')
        with pytest.raises(ValueError):
            parse_percent('101')

    def test_parse_count(self):
        assert parse_count('12') == 12
        assert parse_count('12.0') == 12
        assert parse_count(0, allow_zero=True) == 0

    @pytest.mark.parametrize('value', ['1.5', 0, -3, 'x'])
    def test_parse_count_rejects(self, value):
        with pytest.raises(ValueError):
            parse_count(value, 'pack_count')


class TestFormatting:

    def test_money(self):
        assert money(1500) == '1,500.00 PKR'
        assert money(Decimal('1234567.891'), currency=None) == '1,234,567.89'
        assert money(None) == '-'

    def test_percent(self):
        assert percent(Decimal('12.50')) == '12.5%'
        assert percent(0) == '0%'

    @pytest.mark.parametrize('value,expected', [
        (Decimal('100.000000'), '100.00'),
        (Decimal('10.125000'), '10.125'),
        (Decimal('0.5'), '0.50'),
        (Decimal('12.3456'), '12.3456'),
    ])
    def test_amount_text(self, value, expected):
        assert amount_text(value) == expected
