"""Functions for logging."""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(level: str) -> None:
    """Send every jar-deps log record to stderr at `level` or above (INFO if `level` is not a level name)."""
    level_value = getattr(logging, level.upper(), logging.INFO)
    if not isinstance(level_value, int):
        level_value = logging.INFO
    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    # replace, not add, so repeated calls do not duplicate output
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
