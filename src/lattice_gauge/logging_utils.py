"""Logging setup shared by the command line and long-running scripts."""

import logging
import os
from datetime import datetime
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Union[int, str] = logging.INFO,
                      log_dir: Optional[str] = None) -> logging.Logger:
    """
    Install stream (and optionally file) handlers on the package logger.

    Args:
        level: Logging level or its name
        log_dir: Directory for a timestamped log file (default: no file)

    Returns:
        The `lattice_gauge` package logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    handlers = [logging.StreamHandler()]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f'lattice_gauge_{datetime.now():%Y%m%d_%H%M%S}.log')
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)

    logger = logging.getLogger("lattice_gauge")
    logger.setLevel(level)
    return logger
