#!/usr/bin/env python3
"""
Logging System for d88cpm
Configures the package logger with console, rotating file and JSON handlers
"""

import json
import logging
import logging.handlers
import platform
import sys
import threading
import traceback
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import psutil

ROOT_LOGGER_NAME = "d88cpm"


class LogLevel(Enum):
    """Log level enumeration"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


class LogFormatter(logging.Formatter):
    """Custom formatter with color support and structured output"""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[91m',   # Bright Red
        'RESET': '\033[0m'        # Reset
    }

    # Attributes every LogRecord carries; anything else came in through extra=
    _STANDARD_ATTRS = frozenset(logging.LogRecord(
        '', logging.INFO, '', 0, '', None, None).__dict__) | {'message', 'asctime'}

    def __init__(self, use_colors=True, include_thread=True, structured=False):
        self.use_colors = use_colors and sys.stderr.isatty()
        self.include_thread = include_thread
        self.structured = structured

        if structured:
            super().__init__()
        else:
            super().__init__(self._build_format())

    def _build_format(self):
        """Build the log format string"""
        components = [
            '%(asctime)s',
            '[%(levelname)8s]'
        ]

        if self.include_thread:
            components.append('[%(threadName)s]')

        components.extend([
            '%(name)s:%(lineno)d',
            '- %(message)s'
        ])

        return ' '.join(components)

    def format(self, record):
        if self.structured:
            return self._format_structured(record)
        return self._format_standard(record)

    def _format_structured(self, record):
        """Format as structured JSON log"""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        extra = {k: v for k, v in record.__dict__.items() if k not in self._STANDARD_ATTRS}
        if extra:
            log_entry['extra'] = extra

        return json.dumps(log_entry, default=str)

    def _format_standard(self, record):
        """Format as standard text log with optional colors"""
        formatted = super().format(record)

        if self.use_colors:
            color = self.COLORS.get(record.levelname, '')
            reset = self.COLORS['RESET']
            formatted = f"{color}{formatted}{reset}"

        return formatted


class PerformanceLogger:
    """Context manager for performance logging"""

    def __init__(self, logger, operation: str, level: LogLevel = LogLevel.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time = None

    def __enter__(self):
        self.start_time = datetime.now()
        self.logger.log(self.level.value, f"Starting {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = (datetime.now() - self.start_time).total_seconds()

        if exc_type is None:
            self.logger.log(self.level.value, f"Completed {self.operation} in {duration:.3f}s")
        else:
            self.logger.error(f"Failed {self.operation} after {duration:.3f}s: {exc_val}")

        return False  # Don't suppress exceptions


class Logger:
    """
    Wrapper around the package logger. Modules log through
    logging.getLogger(__name__) and reach these handlers by propagation.
    """

    _instances: Dict[str, 'Logger'] = {}
    _lock = threading.Lock()

    def __init__(self, name: str = ROOT_LOGGER_NAME, config: Optional[Dict[str, Any]] = None):
        self.name = name
        self.config = config or {}
        self._logger = logging.getLogger(self.name)
        self._handlers = []
        self.configure(self.config)

    @classmethod
    def get_logger(cls, name: str = ROOT_LOGGER_NAME,
                   config: Optional[Dict[str, Any]] = None) -> 'Logger':
        """Get or create a logger instance; a given config reconfigures it"""
        with cls._lock:
            if name not in cls._instances:
                cls._instances[name] = cls(name, config)
            elif config is not None:
                cls._instances[name].configure(config)
            return cls._instances[name]

    def configure(self, config: Dict[str, Any]):
        """Replace the handlers according to config"""
        self.config = config
        self.close()

        self._logger.setLevel(self._get_log_level())

        self._setup_console_handler()
        self._setup_file_handler()
        self._setup_error_file_handler()
        if self.config.get('structured_logging', False):
            self._setup_structured_handler()

    def close(self):
        """Detach and close every handler this wrapper installed"""
        for handler in self._handlers:
            self._logger.removeHandler(handler)
            handler.close()
        self._handlers = []

    def _get_log_level(self) -> int:
        """Get the configured log level"""
        level_str = self.config.get('log_level', 'WARNING').upper()
        return getattr(logging, level_str, logging.WARNING)

    def _add_handler(self, handler, formatter, level=None):
        handler.setLevel(self._get_log_level() if level is None else level)
        handler.setFormatter(formatter)
        self._logger.addHandler(handler)
        self._handlers.append(handler)

    def _log_file(self, suffix: str = "") -> Path:
        log_dir = Path(self.config.get('log_directory', 'logs'))
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir / f"{self.name.lower()}{suffix}.log"

    def _rotating_handler(self, path: Path):
        return logging.handlers.RotatingFileHandler(
            path,
            maxBytes=self.config.get('max_file_size', 10 * 1024 * 1024),  # 10MB
            backupCount=self.config.get('backup_count', 5)
        )

    def _setup_console_handler(self):
        """Setup console handler on stderr; stdout carries user messages"""
        if not self.config.get('console_logging', True):
            return

        formatter = LogFormatter(
            use_colors=self.config.get('use_colors', True),
            include_thread=self.config.get('include_thread', False)
        )
        self._add_handler(logging.StreamHandler(sys.stderr), formatter)

    def _setup_file_handler(self):
        """Setup rotating file handler"""
        if not self.config.get('file_logging', False):
            return

        formatter = LogFormatter(
            use_colors=False,
            include_thread=self.config.get('include_thread', False)
        )
        self._add_handler(self._rotating_handler(self._log_file()), formatter)

    def _setup_error_file_handler(self):
        """Setup separate error file handler"""
        if not self.config.get('error_file_logging', False):
            return

        formatter = LogFormatter(use_colors=False, include_thread=True)
        self._add_handler(self._rotating_handler(self._log_file("_errors")), formatter,
                          level=logging.ERROR)

    def _setup_structured_handler(self):
        """Setup structured JSON logging handler"""
        formatter = LogFormatter(structured=True)
        self._add_handler(self._rotating_handler(self._log_file("_structured")), formatter)

    # Logging methods
    def debug(self, message: str, **kwargs):
        """Log debug message"""
        self._logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs):
        """Log info message"""
        self._logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message"""
        self._logger.warning(message, extra=kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs):
        """Log error message"""
        self._logger.error(message, exc_info=exc_info, extra=kwargs)

    def exception(self, message: str, **kwargs):
        """Log exception with traceback"""
        self._logger.exception(message, extra=kwargs)

    def log(self, level: int, message: str, **kwargs):
        """Log with specific level"""
        self._logger.log(level, message, extra=kwargs)

    def is_enabled_for(self, level: LogLevel) -> bool:
        return self._logger.isEnabledFor(level.value)

    # Context managers
    def performance(self, operation: str, level: LogLevel = LogLevel.INFO) -> PerformanceLogger:
        """Create performance logging context manager"""
        return PerformanceLogger(self, operation, level)

    def log_system_info(self):
        """Log host information at debug level"""
        self.debug("System Information:")
        self.debug(f"  Platform: {platform.platform()}")
        self.debug(f"  Python: {platform.python_version()}")
        self.debug(f"  CPU Count: {psutil.cpu_count()}")
        self.debug(f"  Memory: {psutil.virtual_memory().total / (1024**3):.1f} GB")


def setup_logging(config: Optional[Dict[str, Any]] = None) -> Logger:
    """Setup default logging configuration"""
    default_config = {
        'log_level': 'WARNING',
        'console_logging': True,
        'file_logging': False,
        'error_file_logging': False,
        'structured_logging': False,
        'use_colors': True,
        'include_thread': False,
        'log_directory': 'logs',
        'max_file_size': 10 * 1024 * 1024,  # 10MB
        'backup_count': 5
    }

    if config:
        default_config.update(config)

    return Logger.get_logger(ROOT_LOGGER_NAME, default_config)
