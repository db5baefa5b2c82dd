# Enhanced structured logging with multi-channel support
import sys
import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Optional, Any
import structlog

from core.config.settings import Settings
from .channels import (
    LogChannel,
    get_channel_for_component,
    get_channel_config,
    create_log_directory_structure,
    get_channel_statistics
)

# Global logger manager instance
_logger_manager: Optional['EnhancedLoggerManager'] = None


class ChannelFilter(logging.Filter):
    """Filter that routes records to a handler only if they match a channel.

    structlog records carry their event dict in ``record.msg``; plain stdlib
    records may carry a ``channel`` attribute instead.
    """

    def __init__(self, expected_channel: str, allowed_logger_prefixes: Optional[list[str]] = None):
        super().__init__()
        self.expected_channel = expected_channel
        self.allowed_logger_prefixes = allowed_logger_prefixes or []

    def filter(self, record: logging.LogRecord) -> bool:
        ch = getattr(record, "channel", None)
        if ch is None and isinstance(record.msg, dict):
            ch = record.msg.get("channel")
        if ch is not None:
            return str(ch) == self.expected_channel
        name = getattr(record, "name", "")
        return any(name.startswith(prefix) for prefix in self.allowed_logger_prefixes)


class EnhancedLoggerManager:
    """Enhanced logging manager with multi-channel support and configurable formats."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.channel_handlers: Dict[LogChannel, logging.Handler] = {}
        self.configured_loggers: Dict[str, structlog.BoundLogger] = {}

        self._setup_logging()

    def _setup_logging(self) -> None:
        """Setup enhanced logging with configurable formats."""
        if self.settings.logging.file_enabled:
            create_log_directory_structure(self.settings.logs_dir)

        self._setup_console_logging()

        if self.settings.logging.file_enabled:
            self._setup_file_logging()

        if self.settings.logging.multi_channel_enabled:
            self._setup_multi_channel_logging()

        self._configure_structlog()

    def _foreign_chain(self) -> list:
        return [
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
        ]

    def _file_renderer(self):
        if self.settings.logging.json_format:
            return structlog.processors.JSONRenderer()
        return structlog.processors.KeyValueRenderer(key_order=["event", "level", "timestamp"])

    def _setup_console_logging(self) -> None:
        """Setup console logging with configurable format."""
        if not self.settings.logging.console_enabled:
            return

        root_logger = logging.getLogger()
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, self.settings.logging.level.upper()))

        console_processor = (
            structlog.processors.JSONRenderer()
            if self.settings.logging.console_json_format
            else structlog.dev.ConsoleRenderer()
        )
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=console_processor,
                foreign_pre_chain=self._foreign_chain(),
            )
        )

        root_logger.addHandler(console_handler)
        root_logger.setLevel(getattr(logging, self.settings.logging.level.upper()))

    def _setup_file_logging(self) -> None:
        """Setup the combined application file."""
        log_file = Path(self.settings.logs_dir) / "threshold_desk.log"
        root_logger = logging.getLogger()

        for handler in root_logger.handlers:
            if (isinstance(handler, logging.handlers.RotatingFileHandler) and
                    Path(handler.baseFilename) == log_file.resolve()):
                return  # File handler already configured

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=self._parse_size(self.settings.logging.file_max_size),
            backupCount=self.settings.logging.file_backup_count,
            encoding="utf-8"
        )
        file_handler.setLevel(getattr(logging, self.settings.logging.level.upper()))
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=self._file_renderer(),
                foreign_pre_chain=self._foreign_chain(),
            )
        )
        root_logger.addHandler(file_handler)

    def _setup_multi_channel_logging(self) -> None:
        """Setup multi-channel logging with dedicated files."""
        if not self.settings.logging.file_enabled:
            return

        for channel in LogChannel:
            config = get_channel_config(channel)
            self.channel_handlers[channel] = self._create_channel_handler(channel, config)

        # API channel -> uvicorn/fastapi loggers
        api_handler = self.channel_handlers.get(LogChannel.API)
        if api_handler:
            for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
                lg = logging.getLogger(name)
                if api_handler not in lg.handlers:
                    lg.addHandler(api_handler)

        # ERROR channel -> attach to root to capture all ERROR+ records
        error_handler = self.channel_handlers.get(LogChannel.ERROR)
        if error_handler:
            root_logger = logging.getLogger()
            if error_handler not in root_logger.handlers:
                root_logger.addHandler(error_handler)

        # Remaining channels hang off root; ChannelFilter picks each record's channel,
        # so loggers created before configuration are routed too
        root_logger = logging.getLogger()
        for channel, handler in self.channel_handlers.items():
            if channel != LogChannel.ERROR and handler not in root_logger.handlers:
                root_logger.addHandler(handler)

    def _create_channel_handler(self, channel: LogChannel, config) -> logging.Handler:
        """Create a file handler for a specific channel."""
        handler = logging.handlers.RotatingFileHandler(
            filename=config.get_file_path(self.settings.logs_dir),
            maxBytes=self._parse_size(config.max_bytes),
            backupCount=config.backup_count,
            encoding="utf-8"
        )
        handler.setLevel(getattr(logging, config.level))
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=self._file_renderer(),
                foreign_pre_chain=self._foreign_chain(),
            )
        )
        if channel != LogChannel.ERROR:
            allowed_prefixes = []
            if channel == LogChannel.API:
                allowed_prefixes = ["uvicorn", "fastapi", "starlette"]
            elif channel == LogChannel.MARKET_DATA:
                allowed_prefixes = ["kiteconnect"]
            handler.addFilter(ChannelFilter(expected_channel=channel.value, allowed_logger_prefixes=allowed_prefixes))
        return handler

    def _parse_size(self, size_str: str) -> int:
        """Parse size string (e.g., '100MB') to bytes."""
        size_str = size_str.upper()

        if size_str.endswith("B"):
            size_str = size_str[:-1]

        multipliers = {
            "K": 1024,
            "M": 1024 * 1024,
            "G": 1024 * 1024 * 1024,
        }

        for suffix, multiplier in multipliers.items():
            if size_str.endswith(suffix):
                return int(float(size_str[:-1]) * multiplier)

        return int(size_str)

    def _configure_structlog(self) -> None:
        """Configure structlog with appropriate processors."""
        settings = self.settings

        def add_standard_context(logger, name, event_dict):
            """Bind standard context fields once from settings."""
            event_dict.setdefault('env', settings.environment.value)
            event_dict.setdefault('service', settings.app_name)
            event_dict.setdefault('version', settings.version)
            return event_dict

        processors = [
            add_standard_context,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            make_redaction_processor(settings.logging.redact_keys),
            # Defer final rendering to handlers via ProcessorFormatter
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]

        structlog.configure(
            processors=processors,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str, component: Optional[str] = None) -> structlog.BoundLogger:
        """Get a structured logger for a component."""
        if name in self.configured_loggers:
            return self.configured_loggers[name]

        logger = structlog.get_logger(name)
        if component:
            channel = get_channel_for_component(component)
            logger = logger.bind(component=component, channel=channel.value)

        self.configured_loggers[name] = logger
        return logger

    def get_channel_logger(self, name: str, channel: LogChannel) -> structlog.BoundLogger:
        """Get a logger for a specific channel."""
        return structlog.get_logger(name).bind(channel=channel.value)

    def get_statistics(self) -> Dict[str, Any]:
        """Get logging statistics."""
        stats = {
            "total_loggers": len(self.configured_loggers),
            "multi_channel_enabled": self.settings.logging.multi_channel_enabled,
            "file_logging_enabled": self.settings.logging.file_enabled,
            "console_logging_enabled": self.settings.logging.console_enabled,
            "logs_directory": self.settings.logs_dir,
        }
        if self.settings.logging.multi_channel_enabled:
            stats.update(get_channel_statistics())
        return stats


def make_redaction_processor(redact_keys):
    """Build a structlog processor that masks secret-bearing keys recursively."""
    keys_to_redact = {k.lower() for k in redact_keys}

    def _redact(obj):
        if isinstance(obj, dict):
            out = {}
            for k, v in obj.items():
                if isinstance(k, str) and k.lower() in keys_to_redact:
                    out[k] = '[REDACTED]'
                else:
                    out[k] = _redact(v)
            return out
        if isinstance(obj, list):
            return [_redact(v) for v in obj]
        return obj

    def redact_sensitive(logger, name, event_dict):
        """Redact sensitive fields from event dict recursively."""
        return _redact(event_dict)

    return redact_sensitive


def configure_enhanced_logging(settings: Settings) -> EnhancedLoggerManager:
    """Configure the global logger manager."""
    global _logger_manager
    if _logger_manager is None:
        _logger_manager = EnhancedLoggerManager(settings)
    return _logger_manager


def get_enhanced_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a logger; before configuration a lazy structlog proxy is returned.

    Initial values go through ``get_logger`` rather than ``bind`` so the proxy
    resolves against whatever configuration is active at its first use.
    """
    if _logger_manager is not None:
        return _logger_manager.get_logger(name, component)
    if component:
        channel = get_channel_for_component(component)
        return structlog.get_logger(name, component=component, channel=channel.value)
    return structlog.get_logger(name)


def get_channel_logger(name: str, channel: LogChannel) -> structlog.BoundLogger:
    if _logger_manager is not None:
        return _logger_manager.get_channel_logger(name, channel)
    return structlog.get_logger(name, channel=channel.value)


def get_logging_statistics() -> Dict[str, Any]:
    if _logger_manager is None:
        return {"configured": False}
    return _logger_manager.get_statistics()


def get_trading_logger(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.TRADING)


def get_market_data_logger(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.MARKET_DATA)


def get_api_logger(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.API)


def get_audit_logger(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.AUDIT)


def get_error_logger(name: str) -> structlog.BoundLogger:
    return get_channel_logger(name, LogChannel.ERROR)
