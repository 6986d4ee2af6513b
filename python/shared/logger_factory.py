"""
Centralized Logging Factory

A centralized logging system for the redfin-cascade scraper.
All modules log through the root logger to a single rotating file and,
optionally, the console. Each record carries the module name as prefix.

Usage:
    from shared.logger_factory import configure_logger, get_logger
    configure_logger()
    logger = get_logger(__name__)
    logger.info("Scrape started")
"""

import logging
from typing import Protocol, Any
import os
from pathlib import Path
from datetime import datetime
from logging.handlers import RotatingFileHandler


LOG_FILE_ENV = "REDFIN_CASCADE_LOG_FILE"
LOG_LEVEL_ENV = "REDFIN_CASCADE_LOG_LEVEL"
ENABLE_CONSOLE_ENV = "REDFIN_CASCADE_ENABLE_CONSOLE"


class LoggerLike(Protocol):
    def debug(self, msg: Any, *args: Any, **kwargs: Any) -> None: ...
    def info(self, msg: Any, *args: Any, **kwargs: Any) -> None: ...
    def warning(self, msg: Any, *args: Any, **kwargs: Any) -> None: ...
    def error(self, msg: Any, *args: Any, **kwargs: Any) -> None: ...
    def exception(self, msg: Any, *args: Any, **kwargs: Any) -> None: ...
    def critical(self, msg: Any, *args: Any, **kwargs: Any) -> None: ...
    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None: ...
    def setLevel(self, level: Any) -> None: ...


_LEVEL_MAP = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
}


def parse_log_level(level_name: str | None, default: int = logging.INFO) -> int:
    """Map a level name such as 'debug' to its logging constant."""
    if not level_name:
        return default
    return _LEVEL_MAP.get(level_name.upper(), default)


class LoggerFactory:
    """Factory class for creating centralized loggers."""

    def __init__(self) -> None:
        self._configured = False
        self._default_log_file_prefix = "redfin_cascade"
        self._default_log_dir = str(Path(__file__).resolve().parent.parent / "logs")
        self._log_dir = self._default_log_dir
        self._log_file_prefix = self._default_log_file_prefix
        self.log_file_path: str | None = os.getenv(LOG_FILE_ENV)
        self.log_level = parse_log_level(os.getenv(LOG_LEVEL_ENV))
        self.log_format = '[%(asctime)s] [%(name)s] [%(levelname)s] [%(threadName)s] %(message)s'
        self.date_format = '%Y-%m-%d %H:%M:%S'
        self.enable_console_logging = self._get_console_setting()
        self.enable_file_logging = True
        self.max_file_size = 10 * 1024 * 1024  # 10MB
        self.backup_count = 5
        self.logger_override: LoggerLike | None = None

    def _build_log_file_path(self, log_dir: str, log_file_prefix: str) -> str:
        """Build a timestamped log file path, creating the directory on demand."""
        if log_file := os.getenv(LOG_FILE_ENV):
            return log_file

        log_dir_path = Path(log_dir)
        log_dir_path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return str(log_dir_path / f"{log_file_prefix}_{timestamp}.log")

    def _get_console_setting(self) -> bool:
        """Get console logging setting from environment or use default."""
        if console_setting := os.getenv(ENABLE_CONSOLE_ENV):
            return console_setting.lower() in ('true', '1', 'yes', 'on')
        return True

    def _configure_root_logger(self) -> None:
        """Configure the root logger with file and console handlers."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)

        # Clear existing handlers to avoid duplicates
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(
            fmt=self.log_format,
            datefmt=self.date_format
        )

        if self.enable_file_logging:
            if not self.log_file_path:
                self.log_file_path = self._build_log_file_path(self._log_dir, self._log_file_prefix)
            file_handler = RotatingFileHandler(
                filename=self.log_file_path,
                maxBytes=self.max_file_size,
                backupCount=self.backup_count,
                encoding='utf-8'
            )
            file_handler.setLevel(self.log_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        if self.enable_console_logging:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(self.log_level)
            console_handler.setFormatter(formatter)
            root_logger.addHandler(console_handler)

    def configured(self) -> bool:
        """Check if the logger factory has been configured."""
        return self._configured

    def get_logger(self, name: str) -> LoggerLike:
        """
        Get a logger instance for the specified module.

        Args:
            name: Module name (typically __name__)

        Returns:
            Configured logger instance
        """
        if not self.configured():
            raise RuntimeError("LoggerFactory is not configured yet.")

        if self.logger_override:
            return self.logger_override

        return logging.getLogger(name)

    def get_log_file_path(self) -> str:
        """Get the current log file path, empty when no file is written."""
        if self.logger_override is not None or not self.enable_file_logging:
            return ""
        return self.log_file_path or ""

    def configure(self,
                   log_dir: str | None = None,
                   log_file_prefix: str | None = None,
                   log_level: int | None = None,
                   enable_console_logging: bool | None = None,
                   enable_file_logging: bool | None = None,
                   logger_override: LoggerLike | None = None,
                   ) -> None:
        """
        Reconfigure the logging system.

        Args:
            log_dir: Directory for the rotating log file
            log_file_prefix: Prefix of the timestamped log file name
            log_level: New log level
            enable_console_logging: Whether to log to stderr
            enable_file_logging: Whether to log to a file
            logger_override: Logger returned for every module instead of the root hierarchy
        """
        if log_dir or log_file_prefix:
            self._log_dir = log_dir if log_dir is not None else self._default_log_dir
            self._log_file_prefix = log_file_prefix if log_file_prefix is not None else self._default_log_file_prefix
            self.log_file_path = None

        if log_level:
            self.log_level = log_level
        if enable_console_logging is not None:
            self.enable_console_logging = enable_console_logging
        if enable_file_logging is not None:
            self.enable_file_logging = enable_file_logging

        self.logger_override = logger_override

        self._configure_root_logger()
        self._configured = True


# Global factory instance
_factory = LoggerFactory()


def get_logger(name: str) -> LoggerLike:
    """
    Get a logger instance for the specified module.

    This is the main function that modules should use to get their logger.

    Args:
        name: Module name (typically __name__)

    Returns:
        Configured logger instance

    Example:
        from shared.logger_factory import get_logger
        logger = get_logger(__name__)
        logger.info("Processing started")
    """
    return _factory.get_logger(name)


def get_log_file_path() -> str:
    """Get the current log file path."""
    return _factory.get_log_file_path()


def configure_logger(
    log_file_path: str | None = None,
    log_file_prefix: str | None = None,
    log_level: int | None = None,
    enable_console_logging: bool | None = None,
    enable_file_logging: bool | None = None,
    override_existing_settings: bool = False,
    logger_override: LoggerLike | None = None,
    ) -> None:
    """
    Configure the logging system.

    Calling it again is a no-op unless override_existing_settings is set.

    Args:
        log_file_path: Directory for the log file
        log_file_prefix: Prefix of the log file name
        log_level: New log level
        enable_console_logging: Whether to enable console logging
        enable_file_logging: Whether to enable file logging
        override_existing_settings: Reconfigure even if already configured
        logger_override: Logger to hand out instead of module loggers
    """
    if _factory.configured() and not override_existing_settings:
        return

    _factory.configure(
        log_dir=log_file_path,
        log_file_prefix=log_file_prefix,
        log_level=log_level,
        enable_console_logging=enable_console_logging,
        enable_file_logging=enable_file_logging,
        logger_override=logger_override,
        )
