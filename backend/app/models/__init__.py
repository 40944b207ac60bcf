"""
Models package for the NCLEX CAT backend.
"""
from .base import Base, engine, SessionLocal, get_db
from .models import (
    Item,
    CATSessionRecord,
    CATResponseRecord,
)

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "Item",
    "CATSessionRecord",
    "CATResponseRecord",
]
