"""
Central logging configuration for sunstack.

Nothing is configured on import; the CLIs call setup_logging once.
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler


def setup_logging(
    log_level=logging.INFO,
    log_dir='logs',
    log_prefix='sunstack',
    console=True,
):
    """
    Configure the root logger with a console and a rotating file handler.

    Args:
        log_level: Logging level (default: INFO)
        log_dir: Directory for log files
        log_prefix: Prefix for log file names
        console: Also log to stdout. Disable when stdout carries JSON events.

    Returns:
        The root logger
    """
    os.makedirs(log_dir, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"{log_prefix}_{timestamp}.log")

    logger = logging.getLogger()
    logger.setLevel(log_level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10*1024*1024,  # 10 MB
        backupCount=5
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    # Quiet noisy third-party loggers
    logging.getLogger('astropy').setLevel(logging.WARNING)

    return logger