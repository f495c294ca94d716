"""Platform-specific extractor implementations.

Each module implements a class that inherits from BaseExtractor and
supplies the platform's selectors, currency table and ID rules.
"""

from .amazon import AmazonExtractor
from .jumia import JumiaExtractor

__all__ = [
    "AmazonExtractor",
    "JumiaExtractor",
]
