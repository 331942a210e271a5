"""Core module for configuration, database, logging and metrics."""

from schoolpay.core.config import settings
from schoolpay.core.database import Base, async_session_maker, get_session

__all__ = [
    "settings",
    "Base",
    "async_session_maker",
    "get_session",
]
