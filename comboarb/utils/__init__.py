from .logger import setup_logging, get_logger, ContextLogger, JSONFormatter

__all__ = [
    "setup_logging",
    "get_logger",
    "ContextLogger",
    "JSONFormatter",
]
