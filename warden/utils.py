import logging

from warden.core import config


_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a module logger, configuring the root handler on first use."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=_FORMAT)
    logger = logging.getLogger(name)
    logger.setLevel(config.LOG_LEVEL)
    return logger
