"""
Core module for application configuration and utilities.

The adaptive testing engine lives in the ``app.core.cat`` subpackage and is
imported directly: from app.core.cat.service import CATService
"""
from .config import settings

__all__ = ["settings"]
