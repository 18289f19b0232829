"""Console and JSON-lines logging for reconciliation runs.

Every record can carry the run's structured fields (environment, operation,
step, resource). They are attached by :class:`LogContext` and rendered as a
prefix on the console and as top-level keys in the JSON log file, so a CI log
line can be matched to its entry in ``.reconcile/logs/``.
"""

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

LOG_DIR = Path('.reconcile/logs')

STRUCTURED_FIELDS = ('environment', 'operation', 'step', 'resource_id', 'resource_type')

QUIET_LOGGERS = ('boto3', 'botocore', 's3transfer', 'urllib3')

_fields: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar('reconcile_log_fields', default={})


def _record_factory(base_factory):
    def factory(*args, **kwargs):
        record = base_factory(*args, **kwargs)
        for key, value in _fields.get().items():
            setattr(record, key, value)
        return record

    factory.reconcile_fields = True
    return factory


def _install_record_factory() -> None:
    current = logging.getLogRecordFactory()
    if not getattr(current, 'reconcile_fields', False):
        logging.setLogRecordFactory(_record_factory(current))


class JSONFormatter(logging.Formatter):
    """One JSON object per record, stamped with the record's own creation time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name)) for name in STRUCTURED_FIELDS if hasattr(record, name)
        )
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Short console lines: ``HH:MM:SS LEVEL (step) [resource] message``."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        if self.color and record.levelname in self.COLORS:
            level = f"{self.COLORS[record.levelname]}{level}{self.RESET}"

        prefix = ''
        if getattr(record, 'step', None):
            prefix += f"({record.step}) "
        if getattr(record, 'resource_id', None):
            prefix += f"[{record.resource_id}] "

        line = f"{self.formatTime(record, '%H:%M:%S')} {level} {prefix}{record.getMessage()}"
        if record.exc_info:
            line += '\n' + self.formatException(record.exc_info)
        return line


def setup_logging(log_level: str = 'info', log_dir: Optional[Path] = None) -> Path:
    """Route all logging to the console and a daily JSON-lines file.

    Console output goes to stderr so machine-readable command output on
    stdout stays clean. The file always receives debug records.

    Args:
        log_level: Console level (debug, info, warning, error)
        log_dir: Directory for the JSON log files, ``.reconcile/logs`` by default

    Returns:
        Path of the JSON log file
    """
    _install_record_factory()
    level = getattr(logging, log_level.upper())

    log_dir = log_dir or LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"reconcile-{datetime.now(timezone.utc):%Y%m%d}.jsonl"

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(ConsoleFormatter(color=sys.stderr.isatty()))

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_file


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """Attach structured fields to every record logged inside the block.

    Contexts nest; inner fields override outer ones until the inner block
    exits. The ``logger`` argument names the caller's logger for readability,
    fields apply to all loggers.

    Example:
        with LogContext(logger, step='network', resource_id=vpc_id):
            logger.info("Cleaning network resources")
    """

    def __init__(self, logger: logging.Logger, **fields: Any):
        self.logger = logger
        self.fields = fields
        self._token: Optional[contextvars.Token] = None

    def __enter__(self):
        _install_record_factory()
        self._token = _fields.set({**_fields.get(), **self.fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _fields.reset(self._token)
            self._token = None
