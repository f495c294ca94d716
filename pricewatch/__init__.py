"""pricewatch: product page extraction and prioritized rescraping for Amazon and Jumia."""

__version__ = "0.1.0"
