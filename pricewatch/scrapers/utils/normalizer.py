"""Text normalization utilities for scraped product fields.

Covers price string parsing, currency symbol detection, rating and
review-count parsing, and keyword-based category classification.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence, Tuple


# Symbol -> ISO 4217 code. Longer symbols are matched before shorter ones,
# so "US$" and "C$" win over "$".
CURRENCY_SYMBOLS: Dict[str, str] = {
    "US$": "USD",
    "CA$": "CAD",
    "C$": "CAD",
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "₹": "INR",
    "₦": "NGN",
    "GH₵": "GHS",
    "₵": "GHS",
    "KSh": "KES",
    "Ksh": "KES",
    "جنيه": "EGP",
    "ج.م": "EGP",
    "L.E": "EGP",
    "LE": "EGP",
    "CFA": "XOF",
    "R": "ZAR",
    # ISO codes stand for themselves
    "USD": "USD",
    "EUR": "EUR",
    "GBP": "GBP",
    "CAD": "CAD",
    "EGP": "EGP",
    "KES": "KES",
    "NGN": "NGN",
    "INR": "INR",
    "UGX": "UGX",
    "TZS": "TZS",
    "ETB": "ETB",
    "MAD": "MAD",
    "TND": "TND",
    "DZD": "DZD",
    "GHS": "GHS",
    "ZAR": "ZAR",
    "XOF": "XOF",
}


def _symbol_pattern(symbol: str) -> "re.Pattern[str]":
    # Alphabetic symbols must not sit inside a longer Latin word ("R" in "EUR")
    prefix = r"(?<![A-Za-z])" if symbol[0].isalpha() else ""
    suffix = r"(?![A-Za-z])" if symbol[-1].isalpha() else ""
    return re.compile(prefix + re.escape(symbol) + suffix)


_SYMBOL_PATTERNS: List[Tuple["re.Pattern[str]", str]] = [
    (_symbol_pattern(symbol), code)
    for symbol, code in sorted(CURRENCY_SYMBOLS.items(), key=lambda item: -len(item[0]))
]

KNOWN_CURRENCIES = frozenset(CURRENCY_SYMBOLS.values())

_GROUPING_SPACE = re.compile(r"(?<=\d)[\u00a0\u202f](?=\d)")
_NUMBER_TOKEN = re.compile(r"\d[\d.,]*")
_TWO_DIGITS = re.compile(r"\d{2}")
_RATING_OUT_OF = re.compile(
    r"(\d+(?:[.,]\d+)?)\s*(?:out\s+of|of|von|sur|/)\s*5(?![\d.])",
    re.IGNORECASE,
)
_LEADING_NUMBER = re.compile(r"\s*(\d+(?:[.,]\d+)?)")
_WHITESPACE = re.compile(r"\s+")


def clean_text(text: Optional[str]) -> str:
    """Collapse runs of whitespace and trim."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


class PriceNormalizer:
    """Price string parsing.

    Separator heuristic:
    - both "," and "." present: "," is a thousands separator, unless the
      last "," comes after the last "." and is followed by exactly two
      digits ("1.234,56"), in which case "," is the decimal point.
    - only "," present: decimal point iff there is exactly one "," and it
      is followed by exactly two digits ("12,50"); otherwise thousands.
    """

    @staticmethod
    def parse_price(raw: Optional[str]) -> Optional[Decimal]:
        """Parse the first number in a price string.

        Examples:
            "EGP 1,299.00" -> 1299.00
            "1.234,56" -> 1234.56
            "12,50" -> 12.50
            "1,234" -> 1234

        Args:
            raw: Raw price text

        Returns:
            Decimal value, or None if no usable number is present
        """
        if raw is None:
            return None
        text = _GROUPING_SPACE.sub("", str(raw))
        match = _NUMBER_TOKEN.search(text)
        if not match:
            return None

        token = match.group(0).rstrip(".,")
        has_comma = "," in token
        has_dot = "." in token

        if has_comma and has_dot:
            tail = token.rsplit(",", 1)[1]
            if token.rfind(",") > token.rfind(".") and _TWO_DIGITS.fullmatch(tail):
                token = token.replace(".", "").replace(",", ".")
            else:
                token = token.replace(",", "")
        elif has_comma:
            head, _, tail = token.rpartition(",")
            if token.count(",") == 1 and len(tail) == 2:
                token = f"{head}.{tail}"
            else:
                token = token.replace(",", "")

        if token.count(".") > 1:
            return None

        try:
            return Decimal(token)
        except InvalidOperation:
            return None


def detect_currency(text: Optional[str]) -> Optional[str]:
    """Return the ISO code for the first currency symbol found in ``text``."""
    if not text:
        return None
    for pattern, code in _SYMBOL_PATTERNS:
        if pattern.search(text):
            return code
    return None


def currency_for_host(host: Optional[str], domain_currencies: Sequence[Tuple[str, str]]) -> Optional[str]:
    """Look up a currency by host suffix in an ordered (domain, code) table."""
    if not host:
        return None
    host = host.lower()
    for domain, code in domain_currencies:
        if host == domain or host.endswith("." + domain):
            return code
    return None


def parse_rating(text: Optional[str]) -> Optional[float]:
    """Parse a 0-5 star rating from text like "4.5 out of 5 stars" or "4.2/5".

    Returns:
        Rating as float, or None if absent or outside [0, 5]
    """
    if not text:
        return None
    match = _RATING_OUT_OF.search(text) or _LEADING_NUMBER.match(text)
    if not match:
        return None
    value = float(match.group(1).replace(",", "."))
    if 0.0 <= value <= 5.0:
        return value
    return None


def parse_count(text: Optional[str]) -> int:
    """Extract a review count such as "1,234 ratings" -> 1234; 0 if absent."""
    if not text:
        return 0
    match = _NUMBER_TOKEN.search(_GROUPING_SPACE.sub("", text))
    if not match:
        return 0
    digits = re.sub(r"\D", "", match.group(0))
    return int(digits) if digits else 0


class CategoryClassifier:
    """Keyword-weighted classifier over an ordered category taxonomy.

    Each bucket scores the summed length of its keywords found in the
    lower-cased input text. The highest score wins; ties go to the bucket
    declared first.
    """

    def __init__(self, taxonomy: Dict[str, List[str]]):
        self.taxonomy = taxonomy

    def score(self, text: str) -> Dict[str, int]:
        text_lower = text.lower()
        scores = {}
        for bucket, keywords in self.taxonomy.items():
            score = sum(len(kw) for kw in keywords if kw.lower() in text_lower)
            if score > 0:
                scores[bucket] = score
        return scores

    def classify(self, *texts: Optional[str]) -> Optional[str]:
        """Classify the concatenation of ``texts``.

        Returns:
            Best bucket name, or None if no keyword matched
        """
        combined = " ".join(t for t in texts if t)
        if not combined:
            return None

        best, best_score = None, 0
        for bucket, score in self.score(combined).items():
            if score > best_score:
                best, best_score = bucket, score
        return best
