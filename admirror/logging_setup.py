"""
Logging setup for AD Mirror.

Two layers: setup_logging() configures the process-wide handlers (rotating
log file, optional console output) from the ``logging`` configuration
section, and get_directory_logger() builds the per-directory logger that the
loader and reconciler report through.
"""

import glob
import logging
import logging.handlers
import os
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List

from admirror.constants import LogLevel

DIRECTORY_LOGGER_PREFIX = 'admirror.directory'

LOG_LEVEL_MAP = {
    LogLevel.NONE: logging.CRITICAL + 10,
    LogLevel.NORMAL: logging.WARNING,
    LogLevel.DEBUG: logging.DEBUG,
}


class SensitiveDataFilter(logging.Filter):
    """Scrub credentials from log records before they reach a handler."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'unicodePwd', 'unixUserPassword', 'pwd', 'secret',
    ]

    _ASSIGNMENT = re.compile(
        r'(\b(?:%s)[\'"]?\s*[=:]\s*)([\'"]?)[^\s,}\]\'"]+\2' % '|'.join(SENSITIVE_KEYWORDS),
        re.IGNORECASE,
    )
    _TUPLE = re.compile(
        r"(\(\s*'\w+'\s*,\s*'(?:%s)'\s*,\s*)(b?'[^']*'|b?\"[^\"]*\")" % '|'.join(SENSITIVE_KEYWORDS),
        re.IGNORECASE,
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = ()
        message = str(record.msg)
        message = self._TUPLE.sub(r"\1'****'", message)
        message = self._ASSIGNMENT.sub(r'\1\2****\2', message)
        record.msg = message
        return True


def get_directory_logger(root: str, level: LogLevel = LogLevel.NORMAL) -> logging.Logger:
    """
    Return the logger of the directory rooted at ``root``.

    Args:
        root: Directory root, such as "dc=example,dc=com"
        level: NONE silences the logger, NORMAL shows warnings, DEBUG everything

    Returns:
        Logger named after the directory root
    """
    name = f"{DIRECTORY_LOGGER_PREFIX}.{root.lower().replace('.', '_')}"
    directory_logger = logging.getLogger(name)
    directory_logger.setLevel(LOG_LEVEL_MAP[LogLevel(level)])
    directory_logger.disabled = LogLevel(level) is LogLevel.NONE
    return directory_logger


class LoggingManager:
    """Process-wide logging: rotating file, optional console, retention cleanup."""

    LOG_FILE = 'admirror.log'

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Configure the root logger once.

        Args:
            config: The ``logging`` configuration section
        """
        if self.configured:
            return
        config = config or {}

        level = getattr(logging, str(config.get('level', 'INFO')).upper(), logging.INFO)
        self.log_dir = config.get('log_dir', 'logs')
        self.retention_days = config.get('retention_days', 7)
        console_enabled = config.get('console_output', True)
        console_level = getattr(logging, str(config.get('console_level', 'WARNING')).upper(),
                                logging.WARNING)

        self._ensure_log_directory()

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()
        sensitive_filter = SensitiveDataFilter()

        file_handler = self._create_file_handler(config.get('rotation', 'daily'))
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        file_handler.addFilter(sensitive_filter)
        root_logger.addHandler(file_handler)

        if console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(console_level)
            console_handler.setFormatter(logging.Formatter(
                '%(asctime)s [%(levelname)s] %(message)s', datefmt='%H:%M:%S'
            ))
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        self._cleanup_old_logs()
        self.configured = True
        logging.getLogger(__name__).info(
            f"Logging configured: level={logging.getLevelName(level)}, dir={self.log_dir}, "
            f"retention={self.retention_days} days, console={console_enabled}"
        )

    def _ensure_log_directory(self) -> None:
        try:
            os.makedirs(self.log_dir, exist_ok=True)
        except OSError as e:
            logging.getLogger(__name__).warning(
                f"Could not create log directory {self.log_dir}: {e}; logging to the current directory"
            )
            self.log_dir = '.'

    def _create_file_handler(self, rotation: str) -> logging.Handler:
        log_file = os.path.join(self.log_dir, self.LOG_FILE)
        if str(rotation).lower() in ('daily', 'midnight'):
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
            return handler
        return logging.FileHandler(log_file, encoding='utf-8')

    def get_log_files(self) -> List[str]:
        if not self.log_dir:
            return []
        return sorted(glob.glob(os.path.join(self.log_dir, self.LOG_FILE + '*')))

    def _cleanup_old_logs(self) -> None:
        """Delete rotated log files older than the retention period."""
        if self.retention_days <= 0:
            return
        cutoff = datetime.now() - timedelta(days=self.retention_days)
        for log_file in self.get_log_files():
            if log_file.endswith(self.LOG_FILE):
                continue
            try:
                if datetime.fromtimestamp(os.path.getmtime(log_file)) < cutoff:
                    os.remove(log_file)
            except OSError as e:
                logging.getLogger(__name__).warning(f"Could not remove old log file {log_file}: {e}")


_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """Configure process-wide logging from the ``logging`` configuration section."""
    _logging_manager.setup_logging(config)
