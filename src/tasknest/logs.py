import logging
import os
import sys
from pathlib import Path

DETAILED_FORMAT = '[%(asctime)s] %(levelname)-8s [%(name)s:%(funcName)s:%(lineno)d] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_FILENAME = "tasknest.log"


def _log_dir() -> Path:
    override = os.getenv('TASKNEST_LOG_DIR', '')
    if override:
        return Path(override)
    return Path.home() / ".local" / "share" / "tasknest" / "logs"


def _console_level(is_debug: bool) -> int:
    """TASKNEST_DEBUG wins over TASKNEST_LOG_LEVEL; WARNING when neither is set."""
    if is_debug:
        return logging.DEBUG
    env_level = os.getenv('TASKNEST_LOG_LEVEL', '').upper()
    if env_level:
        return getattr(logging, env_level, logging.WARNING)
    return logging.WARNING


def _file_handler(log_dir: Path) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / LOG_FILENAME)
    handler.setFormatter(logging.Formatter(DETAILED_FORMAT, DATE_FORMAT))
    handler.setLevel(logging.DEBUG)
    return handler


def setup_logging():
    """
    Configure the ``tasknest`` logger.

    Console output goes to stdout at a level taken from the environment. Every
    record is also written to a detailed log file; when the log directory
    cannot be used a warning is printed and only the console is kept.
    """
    is_debug = os.getenv('TASKNEST_DEBUG', '').lower() in ('1', 'true', 'yes')

    logger = logging.getLogger('tasknest')
    logger.setLevel(logging.DEBUG)  # handlers filter
    logger.handlers.clear()
    logger.propagate = False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(
        '%(levelname)-8s [%(name)s] %(message)s' if is_debug else '%(levelname)s: %(message)s'
    ))
    console_handler.setLevel(_console_level(is_debug))
    logger.addHandler(console_handler)

    log_dir = _log_dir()
    try:
        logger.addHandler(_file_handler(log_dir))
    except OSError as e:
        logger.warning(f"File logging disabled, cannot write to {log_dir}: {e}")

    return logger


# Initialize logging when package is imported
setup_logging()


def get_logger(name: str = None):
    """Get a logger instance for a specific module."""
    if name:
        return logging.getLogger(f'tasknest.{name}')
    return logging.getLogger('tasknest')
