"""
Sympla source plugin.

Listing pages at ``sympla.com.br/eventos`` are rendered client-side, so this
source is normally driven through the Playwright browser.
"""

from .scraper import SymplaScraper

__all__ = ["SymplaScraper"]
