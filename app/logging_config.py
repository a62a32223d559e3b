"""
Logging setup shared by the web app and the command line scripts.

Console output is colored by level; INFO and above also goes to a dated
file under ``settings.log_dir`` and ERROR and above to a separate error file.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        original = record.levelname
        record.levelname = f'{color}{original}{self.RESET}'
        try:
            return super().format(record)
        finally:
            record.levelname = original


def setup_logging(log_level: str = 'INFO', log_dir: str | None = 'logs') -> None:
    """
    Configure the root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        log_dir: directory for the dated log files; ``None`` logs to the console only.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        today = datetime.now().strftime('%Y-%m-%d')

        file_handler = logging.FileHandler(directory / f'app_{today}.log', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        root_logger.addHandler(file_handler)

        error_handler = logging.FileHandler(directory / f'error_{today}.log', encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        root_logger.addHandler(error_handler)

    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
