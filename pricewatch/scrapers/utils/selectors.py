"""Ordered selector strategies over a parsed page.

A strategy is a pure function ``soup -> Optional[str]``. Extractors keep a
list of strategies per field and take the first non-empty result, so a
selector that matches nothing is a normal outcome rather than an error.
"""

from typing import Any, Callable, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from .normalizer import clean_text

Strategy = Callable[[BeautifulSoup], Optional[str]]


def first_match(
    strategies: Iterable[Strategy],
    soup: BeautifulSoup,
    parse: Optional[Callable[[str], Any]] = None,
) -> Any:
    """Return the first non-empty value produced by ``strategies``.

    When ``parse`` is given, raw values it maps to None are treated as empty
    and the fold moves on to the next strategy.
    """
    for strategy in strategies:
        raw = strategy(soup)
        if not raw:
            continue
        value = parse(raw) if parse else raw
        if value is not None:
            return value
    return None


def select_text(selector: str) -> Strategy:
    """Strategy returning the whitespace-collapsed text of the first match."""

    def strategy(soup: BeautifulSoup) -> Optional[str]:
        element = soup.select_one(selector)
        if element is None:
            return None
        return clean_text(element.get_text(" ")) or None

    strategy.__name__ = f"text[{selector}]"
    return strategy


def select_attr(selector: str, attrs: Sequence[str]) -> Strategy:
    """Strategy returning the first populated attribute among ``attrs``.

    Inline ``data:`` URIs (lazy-load placeholders) are skipped.
    """

    def strategy(soup: BeautifulSoup) -> Optional[str]:
        for element in soup.select(selector):
            value = element_attr(element, attrs)
            if value:
                return value
        return None

    strategy.__name__ = f"attr[{selector}]"
    return strategy


def element_attr(element: Tag, attrs: Sequence[str]) -> Optional[str]:
    for attr in attrs:
        value = element.get(attr)
        if isinstance(value, list):
            value = " ".join(value)
        value = (value or "").strip()
        if value and not value.startswith("data:"):
            return value
    return None


def text_strategies(selectors: Sequence[str]) -> List[Strategy]:
    return [select_text(s) for s in selectors]


def attr_strategies(selectors: Sequence[str], attrs: Sequence[str]) -> List[Strategy]:
    return [select_attr(s, attrs) for s in selectors]
