"""Search descriptor generation."""

from casa_scout.crawl.descriptors import generate_descriptors, select_descriptors

__all__ = ["generate_descriptors", "select_descriptors"]
