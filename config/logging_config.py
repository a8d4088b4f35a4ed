"""
Standardized logging configuration for the trade decision pipeline.

Provides:
- Human-readable colored console logs for operators
- JSON-formatted logs for audit ingestion (machine-readable)
- Category tags so decision, lifecycle and safety lines can be filtered
- Rotating file output and retention cleanup

Usage:
    >>> import logging
    >>> from config.logging_config import LogCategory, setup_logging
    >>> setup_logging(script_name="decision", level="INFO")
    >>> logger = logging.getLogger(__name__)
    >>> logger.info(f"{LogCategory.DECISION} approved", extra={"recommendation_id": "abc"})
"""

import json
import logging
import re
import sys
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path


class LogCategory:
    """Log line prefixes for filtering and alerting."""

    DECISION = "[DECISION]"  # Check outcomes and decision results
    ADVISORY = "[ADVISORY]"  # Advisory Review boundary
    LIFECYCLE = "[LIFECYCLE]"  # State machine transitions
    EXECUTION = "[EXECUTION]"  # Executor gates and submissions
    SAFETY = "[SAFETY]"  # Kill switch, mode downgrades
    AUDIT = "[AUDIT]"  # Audit log writes
    CONTEXT = "[CONTEXT]"  # SystemContext snapshots


SENSITIVE_KEYS = frozenset([
    "api_key", "apikey", "api-key", "token", "auth_token", "access_token",
    "password", "secret", "broker_token",
])


class TokenSanitizer(logging.Filter):
    """Masks secret-looking values in messages and extra fields."""

    _PATTERNS = [
        re.compile(rf'("{key}"\s*:\s*)"[^"]*"', re.IGNORECASE)
        for key in SENSITIVE_KEYS
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            for pattern in self._PATTERNS:
                record.msg = pattern.sub(r'\1"***"', record.msg)

        for key in list(record.__dict__.keys()):
            if key.lower() in SENSITIVE_KEYS:
                record.__dict__[key] = "***"

        return True


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    Extra fields passed via ``extra=`` are merged into the object, so
    ``logger.info("gate failed", extra={"gate": "kill_switch"})`` yields
    ``{"message": "gate failed", "gate": "kill_switch", ...}``.
    """

    _EXCLUDED_ATTRS = frozenset([
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "taskName",
    ])

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in self._EXCLUDED_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ColorFormatter(logging.Formatter):
    """ANSI-colored console formatter."""

    COLORS = {
        "DEBUG": "\033[90m",
        "INFO": "\033[92m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[1;91m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy so file handlers sharing the record see the plain level
        colored = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        colored.levelname = f"{color}{record.levelname:8}{self.RESET}"
        return super().format(colored)


def _find_project_root() -> Path:
    """Find project root by looking for marker files."""
    current_dir = Path(__file__).resolve().parent

    for parent in [current_dir] + list(current_dir.parents):
        if any((parent / marker).exists() for marker in [".git", ".env", "pyproject.toml"]):
            return parent

    return Path.cwd()


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Path | str | None = None,
    script_name: str | None = None,
    log_dir: Path | str | None = None,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> Path | None:
    """
    Configure root logging for a process.

    Args:
        level: Log level name
        json_format: Use JSON on the console as well as in files
        log_file: Explicit log file path (overrides script_name)
        script_name: Generate a timestamped log file with this name
        log_dir: Directory for generated log files (default: {project_root}/logs)
        max_bytes: Rotation size
        backup_count: Rotated files to keep

    Returns:
        Path to the log file if file logging is enabled, None otherwise
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = []

    sanitizer = TokenSanitizer()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(sanitizer)
    if json_format:
        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler.setFormatter(
            ColorFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root_logger.addHandler(console_handler)

    actual_log_file: Path | None = None
    if log_file:
        actual_log_file = Path(log_file)
        actual_log_file.parent.mkdir(parents=True, exist_ok=True)
    elif script_name:
        log_directory = Path(log_dir) if log_dir else _find_project_root() / "logs"
        log_directory.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        actual_log_file = log_directory / f"{script_name}_{timestamp}.log"

    # Files are always JSON so the audit tooling can parse them
    if actual_log_file:
        file_handler = RotatingFileHandler(
            actual_log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.addFilter(sanitizer)
        file_handler.setFormatter(JsonFormatter())
        root_logger.addHandler(file_handler)
        root_logger.info(f"Logging initialized. Writing to {actual_log_file}")

    return actual_log_file


def cleanup_logs(log_dir: Path | str, retention_days: int = 7) -> int:
    """
    Remove log files older than the retention period.

    Returns:
        Number of files deleted
    """
    log_path = Path(log_dir)
    if not log_path.exists():
        return 0

    cutoff_time = time.time() - (retention_days * 86400)
    deleted_count = 0

    for log_file in log_path.glob("*.log*"):
        try:
            if log_file.is_file() and log_file.stat().st_mtime < cutoff_time:
                log_file.unlink()
                deleted_count += 1
        except OSError as e:
            print(f"Failed to delete old log {log_file}: {e}", file=sys.stderr)

    return deleted_count
