"""
Eventbrite Brasil source plugin.
"""

from .scraper import EventbriteScraper

__all__ = ["EventbriteScraper"]
