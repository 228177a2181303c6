"""
Unified logging configuration for the seeded stereo correlator.

Every module obtains a child of one root logger through ``get_logger`` so
that level and handlers are configured in a single place.
"""

import datetime
import logging
import sys
from typing import Optional, Union
from pathlib import Path


class LoggerConfig:
    """Centralized logger configuration manager."""

    _configured = False
    _root_logger_name = 'seeded_stereo'
    _default_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @classmethod
    def setup_root_logger(
        cls,
        level: Union[int, str] = logging.INFO,
        format_string: Optional[str] = None,
        log_file: Optional[Path] = None,
        force: bool = False
    ) -> logging.Logger:
        """
        Setup the root logger for the entire application.

        Args:
            level: Logging level, as a number or a name such as "DEBUG"
            format_string: Custom format string (optional)
            log_file: Optional file path for logging to file
            force: Reconfigure even if already configured

        Returns:
            logging.Logger: Configured root logger
        """
        root_logger = logging.getLogger(cls._root_logger_name)
        if cls._configured and not force:
            return root_logger

        level = cls._resolve_level(level)
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        formatter = logging.Formatter(format_string or cls._default_format)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        if log_file is not None:
            log_file = Path(log_file)
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        # Prevent propagation to avoid duplicate messages
        root_logger.propagate = False
        cls._configured = True

        root_logger.debug(f"Root logger configured: level={logging.getLevelName(level)}")
        if log_file:
            root_logger.info(f"Logging to file: {log_file}")

        return root_logger

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Get a child of the root logger.

        Args:
            name: Logger name (typically __name__ from calling module)

        Returns:
            logging.Logger: Configured logger
        """
        if not cls._configured:
            cls.setup_root_logger()

        if name.startswith(cls._root_logger_name):
            full_name = name
        else:
            full_name = f"{cls._root_logger_name}.{name}"
        logger = logging.getLogger(full_name)
        logger.propagate = True
        return logger

    @staticmethod
    def _resolve_level(level: Union[int, str]) -> int:
        if isinstance(level, str):
            resolved = logging.getLevelName(level.upper())
            if not isinstance(resolved, int):
                raise ValueError(f"Unknown logging level: {level}")
            return resolved
        return level


def get_logger(name: str) -> logging.Logger:
    """Convenience function to get a properly configured logger."""
    return LoggerConfig.get_logger(name)


def log_stage_banner(logger: logging.Logger, message: str) -> None:
    """Log a timestamped stage banner, e.g. at the start and end of a stage."""
    timestamp = datetime.datetime.now().strftime("%Y-%b-%d %H:%M:%S")
    logger.info(f"[ {timestamp} ] : {message}")
