import logging
import sys

from mod_users.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = settings.LOG_LEVEL) -> None:
    root = logging.getLogger("mod_users")
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(name: str) -> logging.Logger:
    """
    name: e.g. mod_users.services.expiration
    Always a child of the package logger so setup_logging() applies to it.
    """
    if not name.startswith("mod_users"):
        name = f"mod_users.{name}"
    return logging.getLogger(name)


logger = get_logger("mod_users")
