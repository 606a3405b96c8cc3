import hashlib
import logging
from datetime import UTC, datetime
from pathlib import Path

from shared.config import ServiceConfig, config

__all__ = ["ServiceConfig", "config", "content_hash", "ensure_directory", "setup_logging", "utcnow"]


def setup_logging(service_name: str, log_level: str | None = None) -> logging.Logger:
    """Setup logging configuration for a service"""
    logger = logging.getLogger(service_name)
    level = (log_level or config.get("log_level", "INFO")).upper()
    logger.setLevel(getattr(logging, level, logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(f"%(asctime)s - {service_name} - %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def content_hash(text: str) -> str:
    """Generate a hash used to key derived data by content"""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def ensure_directory(path: str) -> None:
    """Ensure directory exists, create if not"""
    Path(path).mkdir(parents=True, exist_ok=True)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored"""
    return datetime.now(UTC).replace(tzinfo=None)
