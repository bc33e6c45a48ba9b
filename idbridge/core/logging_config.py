# idbridge/core/logging_config.py
"""
Logging for the identity bridge.

One console handler and one rotating log file on the root logger. Both are
attached once per process, because tests and reloaders build the app
repeatedly.
"""

from logging.handlers import RotatingFileHandler
import logging

from idbridge.core.config import Settings

LOG_FILE_NAME = "idbridge.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 5

# Third-party loggers that would otherwise log every request
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def _has_console_handler(root: logging.Logger) -> bool:
    return any(type(handler) is logging.StreamHandler for handler in root.handlers)


def _has_file_handler(root: logging.Logger, filename: str) -> bool:
    return any(
        isinstance(handler, RotatingFileHandler) and handler.baseFilename == filename
        for handler in root.handlers
    )


def setup_logging(settings: Settings) -> logging.Logger:
    """Configure the root logger from LOG_LEVEL and LOG_DIR"""
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.LOG_LEVEL)

    settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = (settings.LOG_DIR / LOG_FILE_NAME).resolve()
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if not _has_console_handler(root_logger):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if not _has_file_handler(root_logger, str(log_file)):
        file_handler = RotatingFileHandler(
            filename=str(log_file),
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
