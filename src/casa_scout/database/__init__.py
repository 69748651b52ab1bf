"""Database module."""

from casa_scout.database.engine import get_engine, get_session, init_db
from casa_scout.database.repository import ListingRepository

__all__ = ["get_engine", "get_session", "init_db", "ListingRepository"]
