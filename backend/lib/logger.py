"""
Logging Utility for the Inspector Backend

Console logging for the admin API:
- Color-coded levels with an icon per logger area (sessions, timing, overrides...)
- Structured key/value payloads via ``data=``
- Section banners for multi-step operations
- Request/response lines with timing
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    KEY = '\033[93m'        # Bright Yellow
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """Formatter with colors and an icon chosen from the logger name."""

    ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Last component of the logger name -> icon
    AREA_ICONS = {
        'main': '🌐',
        'session_inspector': '🔎',
        'timing_reconciler': '⏱️',
        'dialogue_reconciler': '💬',
        'override_cache': '💾',
        'refresh_scheduler': '🔄',
        'record_store': '🗄️',
        'payload_codec': '📦',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        area = record.name.split('.')[-1]
        icon = self.AREA_ICONS.get(area, self.ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        if self.use_colors:
            level = f"{LEVEL_COLORS.get(record.levelname, Colors.RESET)}{record.levelname:8s}{Colors.RESET}"
            stamp = f"{Colors.TIMESTAMP}[{timestamp}]{Colors.RESET}"
            name = f"{Colors.BOLD}{record.name}{Colors.RESET}"
        else:
            level = f"{record.levelname:8s}"
            stamp = f"[{timestamp}]"
            name = record.name

        formatted = f"{stamp} {icon} {level} {name} | {record.getMessage()}"

        data = getattr(record, 'data', None)
        if data:
            formatted += "\n" + format_data(data, use_colors=self.use_colors)

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def format_data(data: Dict[str, Any], indent: int = 2, use_colors: bool = False) -> str:
    """Render a flat or nested dict as indented ``key: value`` lines."""
    lines = []
    for key, value in data.items():
        label = f"{Colors.KEY}{key}{Colors.RESET}" if use_colors else str(key)
        if isinstance(value, dict):
            lines.append(f"{' ' * indent}{label}:")
            lines.append(format_data(value, indent + 2, use_colors))
        elif isinstance(value, list) and len(value) > 5:
            lines.append(f"{' ' * indent}{label}: {value[:3]} ... ({len(value)} items total)")
        else:
            lines.append(f"{' ' * indent}{label}: {value}")
    return "\n".join(lines)


class StructuredLogger:
    """Thin wrapper adding ``data=`` payloads and section banners to a logger."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Log a banner marking the start of a multi-step operation."""
        separator = "=" * 60
        self.logger.info(f"{separator}\n📋 {title.upper()}\n{separator}", extra={"data": data})

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.debug(message, extra={"data": data})

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(message, extra={"data": data})

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.warning(message, extra={"data": data})

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        """Log an error, attaching the exception type and traceback when given."""
        if error:
            message = f"{message} Error: {type(error).__name__}: {error}"
        self.logger.error(message, exc_info=error, extra={"data": data})

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(f"✅ {message}", extra={"data": data})

    def request(self, method: str, path: str, user_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        request_data = {
            "user_id": user_id[:20] + "..." if user_id and len(user_id) > 20 else user_id,
        }
        if data:
            request_data.update(data)
        self.logger.info(f"📥 REQUEST: {method} {path}", extra={"data": request_data})

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        response_data = {
            "duration_ms": f"{duration * 1000:.2f}" if duration else None,
        }
        if data:
            response_data.update(data)
        self.logger.info(f"📤 RESPONSE: {status} {path}", extra={"data": response_data})


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Route all logging to stdout through ColoredFormatter."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy loggers
    for noisy in ('asyncio', 'httpx', 'httpcore', 'hpack', 'postgrest'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
