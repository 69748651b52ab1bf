"""Scraper modules."""

from casa_scout.scrapers.base import ListingExtractor
from casa_scout.scrapers.browser import BrowserConfig, BrowserManager, FetchResponse
from casa_scout.scrapers.fetcher import PageFetcher, get_extractor
from casa_scout.scrapers.lamudi import LamudiExtractor
from casa_scout.scrapers.mercadolibre import MercadoLibreExtractor

__all__ = [
    "BrowserConfig",
    "BrowserManager",
    "FetchResponse",
    "LamudiExtractor",
    "ListingExtractor",
    "MercadoLibreExtractor",
    "PageFetcher",
    "get_extractor",
]
