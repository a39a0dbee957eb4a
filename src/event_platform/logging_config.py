import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

SERVICE_LOGGERS = ("services.events", "event_platform")


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def setup_logging(level: str = "INFO", *, sql_echo: bool = False) -> None:
    """
    Configure stdout logging for the event series service.

    The handler is only installed once; repeated calls (one per app in
    tests) just adjust levels. SQL statement logging stays at WARNING
    unless sql_echo is set.
    """
    numeric_level = _resolve_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    if not root_logger.hasHandlers():
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(
            logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        )
        root_logger.addHandler(console_handler)

    for name in SERVICE_LOGGERS:
        logging.getLogger(name).setLevel(numeric_level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if sql_echo else logging.WARNING
    )
