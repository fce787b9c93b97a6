"""
Tests for amount handling and display formatting
"""

import pytest
from decimal import Decimal
from datetime import date

from installment_book.amounts import (
    to_amount, amount_from_string, group_digits, format_amount, format_date
)


class TestToAmount:
    """Test Decimal coercion"""

    def test_int_and_string(self):
        assert to_amount(100) == Decimal('100.00')
        assert to_amount("99.995") == Decimal('100.00')
        assert to_amount(Decimal('12.345')) == Decimal('12.35')

    def test_rejects_float(self):
        """Floats never enter the ledger"""
        with pytest.raises(ValueError, match="Decimal, int or str"):
            to_amount(10.5)

    def test_rejects_bool(self):
        with pytest.raises(ValueError):
            to_amount(True)

    def test_rejects_garbage(self):
        with pytest.raises(ValueError, match="Cannot convert"):
            to_amount("abc")
        with pytest.raises(ValueError, match="finite"):
            to_amount(Decimal('Infinity'))

    def test_rejects_oversized(self):
        """Amounts too wide to keep two decimal places are input errors"""
        with pytest.raises(ValueError, match="too large"):
            to_amount("100000000000000000000000000000")
        with pytest.raises(ValueError, match="too large"):
            to_amount("1e30")


class TestAmountFromString:
    """Test parsing operator-entered amounts"""

    def test_rupee_and_grouping(self):
        assert amount_from_string("₹1,250") == Decimal('1250.00')
        assert amount_from_string("1,00,000.50") == Decimal('100000.50')
        assert amount_from_string(" 1,250 ") == Decimal('1250.00')
        assert amount_from_string("-₹50") == Decimal('-50.00')
        assert amount_from_string("$75", symbol="$") == Decimal('75.00')

    def test_rejects_stray_characters(self):
        with pytest.raises(ValueError, match="Cannot convert"):
            amount_from_string("12abc")
        with pytest.raises(ValueError, match="too large"):
            amount_from_string("1e30")

    def test_empty(self):
        with pytest.raises(ValueError):
            amount_from_string("")
        with pytest.raises(ValueError):
            amount_from_string("₹")


class TestFormatting:
    """Test collection sheet formatting"""

    def test_indian_grouping(self):
        assert group_digits("999") == "999"
        assert group_digits("1250") == "1,250"
        assert group_digits("100000") == "1,00,000"
        assert group_digits("12345678") == "1,23,45,678"

    def test_format_amount(self):
        assert format_amount(Decimal('1250')) == "₹1,250"
        assert format_amount(Decimal('1250.60')) == "₹1,251"
        assert format_amount(Decimal('-50')) == "-₹50"
        assert format_amount(Decimal('1250.5'), symbol="Rs ", places=2) == "Rs 1,250.50"

    def test_format_date(self):
        assert format_date(date(2024, 1, 2)) == "02/01/2024"
        assert format_date(date(2024, 1, 2), "%Y-%m-%d") == "2024-01-02"
        assert format_date(None) == ""
