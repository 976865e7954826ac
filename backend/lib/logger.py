"""
Backend Logging

Colored, icon-tagged console output for the tutor API plus a
StructuredLogger with section banners and request/response lines.
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional


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
    SUBSECTION = '\033[96m' # Bright Cyan
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
    """Formatter that prefixes each record with time, icon and level."""

    ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Keyed by the last component of the logger name
    MODULE_ICONS = {
        'main': '🌐',
        'exam_generator': '📝',
        'exam_submission': '🧮',
        'lesson_generator': '📖',
        'remediation': '💬',
        'student_model_manager': '🧠',
        'session_manager': '💾',
        'progression': '🔓',
        'llm_client': '🤖',
        'record_store': '🗄️',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        icon = self.MODULE_ICONS.get(record.name.split('.')[-1], self.ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        if self.use_colors:
            level_color = LEVEL_COLORS.get(record.levelname, Colors.RESET)
            reset, bold, ts_color = Colors.RESET, Colors.BOLD, Colors.TIMESTAMP
        else:
            level_color = reset = bold = ts_color = ''

        formatted = (
            f"{ts_color}[{timestamp}]{reset} "
            f"{icon} {level_color}{record.levelname:8s}{reset} "
            f"{bold}{record.name}{reset} | {record.getMessage()}"
        )
        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


class StructuredLogger:
    """Logger with section banners and key/value payloads."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)
        self._section_stack: List[str] = []

    def _format_data(self, data: Any, indent: int = 2) -> str:
        if isinstance(data, dict):
            lines = [f"{' ' * indent}{key}: {self._format_data(value, indent + 2)}" for key, value in data.items()]
            return "{\n" + "\n".join(lines) + f"\n{' ' * (indent - 2)}}}"
        if isinstance(data, list) and len(data) > 5:
            shown = ", ".join(str(item) for item in data[:3])
            return f"[{shown}, ... ({len(data)} items total)]"
        return str(data)

    def _banner(self, char: str, width: int, title: str, color: str, data: Optional[Dict[str, Any]]):
        tty = sys.stdout.isatty()
        start, end = (color, Colors.RESET) if tty else ('', '')
        separator = char * width
        print(f"\n{start}{separator}{end}")
        print(f"{start}{title}{end}")
        if data:
            print(f"{start}{self._format_data(data)}{end}")
        print(f"{start}{separator}{end}\n")

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Open a log section."""
        self._section_stack.append(title)
        self._banner("=", 80, f"📋 {title.upper()}", Colors.SECTION, data)

    def subsection(self, title: str, data: Optional[Dict[str, Any]] = None):
        self._banner("-", 60, f"  → {title}", Colors.SUBSECTION, data)

    def end_section(self):
        if self._section_stack:
            self._section_stack.pop()

    def _with_data(self, message: str, data: Optional[Dict[str, Any]]) -> str:
        return f"{message}\n{self._format_data(data)}" if data else message

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.debug(self._with_data(message, data))

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(message, data))

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.warning(self._with_data(message, data))

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        """Log an error, with the exception's traceback when given."""
        error_info = f" Error: {type(error).__name__}: {error}" if error else ""
        self.logger.error(self._with_data(f"{message}{error_info}", data), exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(f"✅ {message}", data))

    def request(self, method: str, path: str, user_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        """Log an incoming request."""
        payload: Dict[str, Any] = {"user_id": user_id}
        if data:
            payload.update(data)
        self.logger.info(self._with_data(f"📥 REQUEST: {method} {path}", payload))

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        """Log an outgoing response."""
        payload: Dict[str, Any] = {"duration_ms": f"{duration * 1000:.2f}" if duration else None}
        if data:
            payload.update(data)
        self.logger.info(self._with_data(f"📤 RESPONSE: {status} {path}", payload))


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Install the colored console handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy loggers
    for noisy in ('asyncio', 'httpx', 'httpcore', 'openai', 'hpack'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
