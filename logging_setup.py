import logging
import sys

from config import LOG_LEVEL

LOGGER_NAMES = ("storefront", "main", "auth", "cart", "catalog", "orders", "payments",
                "addresses", "wishlist", "guest_cart", "cache", "database")

FORMAT = "%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s"


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Attach a stdout handler to the service loggers (once)."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(FORMAT))
    for name in LOGGER_NAMES:
        log = logging.getLogger(name)
        log.setLevel(level)
        if not log.handlers:
            log.addHandler(handler)
    logging.getLogger("storefront").info("Logging configured at %s", level)
