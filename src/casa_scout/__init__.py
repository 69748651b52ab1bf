"""casa-scout: real-estate listing crawler with idempotent persistence."""

__version__ = "0.1.0"
