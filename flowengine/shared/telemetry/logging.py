"""Process logging for flowengine (stdlib logging on stdout)."""

import logging
import sys

from flowengine.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging() -> None:
    """Install the stdout handler; DEBUG when settings.debug is on, else INFO.

    SQL statement logging stays governed by database_echo, so the
    sqlalchemy.engine logger is held at WARNING unless echo is enabled.
    """
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    if not settings.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
