"""
Database models and session helpers.
"""
from archive.common.db.models import Base
from archive.common.db.connection import get_engine, get_session, make_session

__all__ = [
    "Base",
    "get_engine",
    "get_session",
    "make_session",
]
