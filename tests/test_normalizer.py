"""Tests for price, currency, rating and category normalization."""

from decimal import Decimal

import pytest

from pricewatch.scrapers.utils.normalizer import (
    CURRENCY_SYMBOLS,
    CategoryClassifier,
    PriceNormalizer,
    clean_text,
    currency_for_host,
    detect_currency,
    parse_count,
    parse_rating,
)


class TestParsePrice:
    """Tests for PriceNormalizer.parse_price."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("$249.00", Decimal("249.00")),
            ("EGP 1,299.00", Decimal("1299.00")),
            ("1.234,56", Decimal("1234.56")),
            ("€ 1.234,56", Decimal("1234.56")),
            ("12,50", Decimal("12.50")),
            ("1,234", Decimal("1234")),
            ("1,234,567", Decimal("1234567")),
            ("1,234,567.89", Decimal("1234567.89")),
            ("KSh 2,999", Decimal("2999")),
            ("19.99", Decimal("19.99")),
            ("Price: 45", Decimal("45")),
            ("1\u00a0299,00", Decimal("1299.00")),
        ],
    )
    def test_parses(self, raw, expected):
        assert PriceNormalizer.parse_price(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "Currently unavailable", "$"])
    def test_no_number(self, raw):
        assert PriceNormalizer.parse_price(raw) is None

    def test_takes_first_number_of_a_range(self):
        assert PriceNormalizer.parse_price("$19.99 - $29.99") == Decimal("19.99")

    def test_multiple_dots_rejected(self):
        assert PriceNormalizer.parse_price("1.234.567") is None


class TestCurrency:
    """Tests for currency symbol detection."""

    @pytest.mark.parametrize("symbol,code", sorted(CURRENCY_SYMBOLS.items()))
    def test_every_symbol_resolves(self, symbol, code):
        assert detect_currency(f"{symbol} 100") == code

    def test_longest_symbol_wins(self):
        assert detect_currency("US$ 10") == "USD"
        assert detect_currency("C$ 10") == "CAD"
        assert detect_currency("GH₵ 10") == "GHS"

    def test_letter_symbol_needs_word_boundary(self):
        # "R" inside "EUR" must not be read as rand
        assert detect_currency("100 EUR") == "EUR"
        assert detect_currency("Rating 100") is None

    def test_no_symbol(self):
        assert detect_currency("100") is None
        assert detect_currency(None) is None

    def test_currency_for_host(self):
        table = (("amazon.co.uk", "GBP"), ("amazon.com", "USD"))
        assert currency_for_host("www.amazon.co.uk", table) == "GBP"
        assert currency_for_host("amazon.com", table) == "USD"
        assert currency_for_host("www.example.com", table) is None
        assert currency_for_host(None, table) is None


class TestRatingAndCount:
    """Tests for rating and review count parsing."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("4.5 out of 5 stars", 4.5),
            ("4,5 von 5 Sternen", 4.5),
            ("3.8/5", 3.8),
            ("4.2 out of 5", 4.2),
            ("4", 4.0),
        ],
    )
    def test_rating(self, text, expected):
        assert parse_rating(text) == pytest.approx(expected)

    @pytest.mark.parametrize("text", [None, "", "no rating", "7.5 points"])
    def test_rating_absent_or_out_of_range(self, text):
        assert parse_rating(text) is None

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("12,345 ratings", 12345),
            ("(87 verified ratings)", 87),
            ("1 global rating", 1),
            ("No reviews", 0),
            (None, 0),
        ],
    )
    def test_count(self, text, expected):
        assert parse_count(text) == expected


class TestCategoryClassifier:
    """Tests for keyword-weighted classification."""

    TAXONOMY = {
        "electronics": ["Phones", "Electronics"],
        "fashion": ["Shoes", "Bags"],
        "sports": ["Sports"],
    }

    def test_best_score_wins(self):
        classifier = CategoryClassifier(self.TAXONOMY)
        assert classifier.classify("Running Shoes", "Sports Bags") == "fashion"

    def test_tie_goes_to_first_declared_bucket(self):
        classifier = CategoryClassifier({"first": ["abc"], "second": ["xyz"]})
        assert classifier.classify("abc xyz") == "first"

    def test_case_insensitive(self):
        classifier = CategoryClassifier(self.TAXONOMY)
        assert classifier.classify("mobile PHONES") == "electronics"

    def test_no_match(self):
        classifier = CategoryClassifier(self.TAXONOMY)
        assert classifier.classify("Garden hose") is None
        assert classifier.classify(None, "") is None


def test_clean_text():
    assert clean_text("  Hello \n\t world  ") == "Hello world"
    assert clean_text(None) == ""
