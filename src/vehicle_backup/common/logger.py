# vehicle_backup/common/logger.py
"""
Logging configuration for the vehicle_backup package.

All status and error lines of the poller are emitted through the package
logger, so the console output of a run is whatever this module configures.
"""

import logging
import sys
from pathlib import Path

from vehicle_backup.config import LoggingConfig

__all__: list[str] = ['PACKAGE_LOGGER_NAME', 'setup_logger']

PACKAGE_LOGGER_NAME: str = 'vehicle_backup'


def setup_logger(
    logging_level: int | None = None,
    config: LoggingConfig | None = None,
) -> logging.Logger:
    """
    Set up logging for the vehicle_backup package.

    Configures the package-level logger so that every module logger created
    with logging.getLogger(__name__) inherits the same handlers. Console
    output goes to stdout.

    The function is idempotent: calling it again resets and reconfigures
    the handlers based on the provided arguments.

    Args:
        logging_level: Console level to use when NO config object is given.
            Defaults to logging.INFO.
        config: Optional validated logging configuration. If provided:
                - Console logging uses config.console_level
                - File logging is enabled if config.file_path is set
                - The 'logging_level' argument is ignored.

    Returns:
        The package-level logger ('vehicle_backup').

    Example:
        >>> setup_logger(logging_level=logging.DEBUG)
        >>> setup_logger(config=resolve_config().logging)
    """
    package_logger: logging.Logger = logging.getLogger(PACKAGE_LOGGER_NAME)

    # Clear existing handlers to prevent duplicate lines on reconfiguration
    package_logger.handlers.clear()

    log_format: logging.Formatter = logging.Formatter(
        fmt='%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )

    # --- 1. Console handler ---
    if logging_level is None:
        logging_level = logging.INFO
    if config:
        console_level: int = config.get_console_level_int()
    else:
        console_level = logging_level

    console_handler: logging.Handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_format)
    console_handler.setLevel(console_level)
    package_logger.addHandler(console_handler)

    # --- 2. File handler (config only) ---
    file_level: int | None = None

    if config and config.file_path and config.get_file_level_int():
        log_file_path: Path = config.file_path
        file_level = config.get_file_level_int()

        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler: logging.FileHandler = logging.FileHandler(
            filename=str(log_file_path),
            mode='a',
            encoding='utf-8',
        )
        file_handler.setFormatter(log_format)
        if file_level is not None:
            file_handler.setLevel(file_level)

        package_logger.addHandler(file_handler)

        if console_level <= logging.INFO:
            print(f'Logging to file: {log_file_path}', file=sys.stderr)

    # --- 3. Package logger level ---
    # Must be the most verbose of all handler levels.
    effective_level: int = console_level
    if file_level is not None:
        effective_level = min(console_level, file_level)

    package_logger.setLevel(effective_level)

    return package_logger
