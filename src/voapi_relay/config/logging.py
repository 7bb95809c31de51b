import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

import structlog

from voapi_relay.config.settings import Settings


class LogConfig:
    """Centralized logging configuration"""

    def __init__(self, settings: Settings):
        self.debug = settings.debug
        self.logs_dir = Path(settings.log_dir) if settings.log_dir else self._get_project_root() / "logs"
        self.logs_dir.mkdir(parents=True, exist_ok=True)

        # Log file paths
        self.main_log = self.logs_dir / "voapi_relay.log"
        self.upstream_log = self.logs_dir / "upstream_api.log"
        self.artifact_log = self.logs_dir / "artifacts.log"
        self.error_log = self.logs_dir / "errors.log"

        self.log_level = logging.DEBUG if self.debug else logging.INFO
        self.file_log_level = logging.DEBUG  # Always debug for files

        self.detailed_formatter = logging.Formatter(
            '%(asctime)s | %(name)-20s | %(levelname)-8s | %(funcName)-20s:%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        self.simple_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def _get_project_root(self) -> Path:
        # src/voapi_relay/config/logging.py -> project root
        return Path(__file__).resolve().parent.parent.parent.parent

    def create_rotating_handler(self, filepath: Path, max_bytes: int = 10*1024*1024, backup_count: int = 5) -> logging.Handler:
        """Create a rotating file handler with proper configuration"""
        handler = logging.handlers.RotatingFileHandler(
            filepath,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        handler.setLevel(self.file_log_level)
        handler.setFormatter(self.detailed_formatter)
        return handler

    def create_console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(self.log_level)
        handler.setFormatter(self.detailed_formatter if self.debug else self.simple_formatter)
        return handler

    def create_error_handler(self) -> logging.Handler:
        """Create handler specifically for error logs"""
        handler = logging.handlers.RotatingFileHandler(
            self.error_log,
            maxBytes=5*1024*1024,
            backupCount=10,
            encoding='utf-8'
        )
        handler.setLevel(logging.ERROR)
        handler.setFormatter(self.detailed_formatter)
        return handler


def setup_logger(config: LogConfig, name: str, log_file: Optional[Path] = None, level: int = logging.DEBUG) -> logging.Logger:
    """Setup a dedicated logger that writes to its own file as well as the console"""
    logger = logging.getLogger(name)

    logger.handlers.clear()
    logger.setLevel(level)
    logger.addHandler(config.create_console_handler())
    if log_file:
        logger.addHandler(config.create_rotating_handler(log_file))
    logger.addHandler(config.create_error_handler())

    # Prevent duplicate logs
    logger.propagate = False

    return logger


def configure_logging(settings: Settings) -> LogConfig:
    """Configure logging for the entire application"""
    config = LogConfig(settings)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(config.log_level)
    root_logger.addHandler(config.create_console_handler())
    root_logger.addHandler(config.create_rotating_handler(config.main_log))
    root_logger.addHandler(config.create_error_handler())

    # Upstream API calls and artifact workflows get their own files
    setup_logger(config, "upstream", config.upstream_log)
    setup_logger(config, "artifacts", config.artifact_log)
    setup_logger(config, "database", config.main_log, level=logging.INFO)

    configure_structlog(config)

    logger = structlog.get_logger("logging")
    logger.info("Logging system initialized",
                log_level=logging.getLevelName(config.log_level),
                logs_directory=str(config.logs_dir),
                main_log=str(config.main_log),
                debug_mode=config.debug)
    return config


def configure_structlog(config: LogConfig):
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.debug:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structlog logger for the given name"""
    return structlog.get_logger(name)


def mask_secret(value: Optional[str], visible: int = 6) -> str:
    """Shorten a cookie string or key so it can be logged."""
    if not value:
        return ""
    if len(value) <= visible:
        return "***"
    return f"{value[:visible]}...({len(value)} chars)"
