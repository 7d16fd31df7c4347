from .cache import HotCache
from .config import Settings, settings
from .database import build_engine, build_session_factory
from .logging import logger, setup_logging

__all__ = [
    "HotCache",
    "Settings",
    "build_engine",
    "build_session_factory",
    "logger",
    "settings",
    "setup_logging"
]
