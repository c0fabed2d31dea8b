"""Logging utilities."""

import logging
import sys
from pathlib import Path
from typing import Optional, Union


def setup_logger(name: str = 'spherecount', log_level: Union[int, str] = logging.INFO,
                log_file: Optional[str] = None) -> logging.Logger:
    """Setup logger with console and optional file handler."""
    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Repeated setup must not duplicate output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def setup_from_config(config: Optional[dict] = None) -> logging.Logger:
    """Configure the package logger from the `logging` config section."""
    from spherecount.config import get_section

    section = get_section(config, 'logging')
    return setup_logger('spherecount', section['level'], section['log_file'])
