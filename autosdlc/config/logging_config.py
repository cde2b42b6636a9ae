"""
Logging Configuration

Centralized logging setup shared by the coordinator and agent processes.
"""

import logging
import sys
from pathlib import Path

# Log levels
LOG_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}


def setup_logging(
    log_level: str = 'INFO',
    log_file: str | None = None,
    log_dir: str = 'logs',
    process_name: str | None = None
) -> None:
    """
    Setup process-wide logging configuration.

    Every agent runs as its own process, so the optional process name is
    folded into the format to keep interleaved console output readable.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file name (if None, logs to console only)
        log_dir: Directory for log files
        process_name: Optional agent/coordinator name shown in each line
    """
    level = LOG_LEVELS.get(log_level.upper(), logging.INFO)
    prefix = f'[{process_name}] ' if process_name else ''

    detailed_formatter = logging.Formatter(
        prefix + '[%(asctime)s] [%(levelname)s] [%(name)s:%(lineno)d] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_formatter = logging.Formatter(
        prefix + '[%(levelname)s] %(name)s: %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(
            log_path / log_file,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(detailed_formatter)
        root_logger.addHandler(file_handler)

    # uvicorn access logs are noisy with one listener per agent
    logging.getLogger('uvicorn.access').setLevel(max(level, logging.WARNING))

    logging.info(f"Logging configured: level={log_level}, file={log_file}")
