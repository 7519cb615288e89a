import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Context variables for correlation
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)
schedule_id_var: ContextVar[Optional[str]] = ContextVar('schedule_id', default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar('session_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)


class SecretMasker:
    """Masks sensitive information in log messages."""

    def __init__(self):
        """Initialize secret masker with patterns."""
        self.patterns = [
            # API tokens and keys
            r'(?i)(token|key|secret|password|auth)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.\|]{10,})["\']?',
            # Backend bearer tokens
            r'(?i)(api_token|access_token)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.\|]{20,})["\']?',
            # Authorization headers
            r'(?i)(authorization|bearer)[\s]*[:=]?[\s]+["\']?([a-zA-Z0-9\-_\.\|]{20,})["\']?',
        ]

        self.compiled_patterns = [re.compile(pattern) for pattern in self.patterns]

    def mask_secrets(self, text: str) -> str:
        """Mask sensitive information in text."""
        if not text:
            return text

        masked_text = text

        for pattern in self.compiled_patterns:
            def replace_match(match):
                prefix = match.group(1)
                secret = match.group(2)
                # Keep first 4 and last 4 characters
                if len(secret) > 8:
                    masked_secret = secret[:4] + '*' * (len(secret) - 8) + secret[-4:]
                else:
                    masked_secret = '*' * len(secret)
                return f"{prefix}: {masked_secret}"

            masked_text = pattern.sub(replace_match, masked_text)

        return masked_text

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask sensitive information in dictionary."""
        if not data:
            return data

        masked_data = {}

        for key, value in data.items():
            if isinstance(value, str):
                if key.lower() in ('token', 'password', 'api_token', 'authorization'):
                    masked_data[key] = '*' * len(value)
                else:
                    masked_data[key] = self.mask_secrets(value)
            elif isinstance(value, dict):
                masked_data[key] = self.mask_dict(value)
            elif isinstance(value, list):
                masked_data[key] = [self.mask_dict(item) if isinstance(item, dict)
                                  else self.mask_secrets(item) if isinstance(item, str)
                                  else item for item in value]
            else:
                masked_data[key] = value

        return masked_data


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self):
        """Initialize formatter."""
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        # Correlation fields
        playlist_id = playlist_id_var.get()
        schedule_id = schedule_id_var.get()
        session_id = session_id_var.get()
        stage = stage_var.get()
        if playlist_id:
            log_entry['playlistId'] = playlist_id
        if schedule_id:
            log_entry['scheduleId'] = schedule_id
        if session_id:
            log_entry['sessionId'] = session_id
        if stage:
            log_entry['stage'] = stage

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if hasattr(record, 'fields') and record.fields:
            log_entry['fields'] = self.masker.mask_dict(record.fields)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class CorrelationContext:
    """Context manager for correlation data."""

    def __init__(self, playlist_id: Optional[str] = None,
                 schedule_id: Optional[str] = None,
                 session_id: Optional[str] = None,
                 stage: Optional[str] = None):
        self.values = {
            'playlist_id': playlist_id,
            'schedule_id': schedule_id,
            'session_id': session_id,
            'stage': stage,
        }
        self._tokens = {}

    _VARS = {
        'playlist_id': playlist_id_var,
        'schedule_id': schedule_id_var,
        'session_id': session_id_var,
        'stage': stage_var,
    }

    def __enter__(self):
        """Set correlation context."""
        for name, value in self.values.items():
            if value is not None:
                self._tokens[name] = self._VARS[name].set(str(value))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Restore correlation context."""
        for name, token in self._tokens.items():
            self._VARS[name].reset(token)
        self._tokens = {}


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None) -> logging.Logger:
    """Setup structured logging on the ``radiodesk`` logger."""
    logger = logging.getLogger('radiodesk')
    logger.setLevel(getattr(logging, level.upper()))

    logger.handlers.clear()

    formatter = StructuredFormatter()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = 'radiodesk') -> logging.Logger:
    """Get logger with structured formatting."""
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None,
                    exc_info: bool = False, **kwargs) -> None:
    """Log message with additional fields."""
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(
        logger.name, levelno,
        '', 0, message, (), sys.exc_info() if exc_info else None
    )

    merged = dict(fields or {})
    merged.update(kwargs)
    if merged:
        record.fields = merged

    logger.handle(record)


def log_timeline_recalculated(logger: logging.Logger, playlist_id: Optional[Any],
                              track_count: int, anchor: str, **kwargs) -> None:
    """Log a timeline recalculation."""
    with CorrelationContext(playlist_id=playlist_id, stage='timeline'):
        log_with_fields(logger, 'DEBUG', 'Timeline recalculated', {
            'track_count': track_count,
            'anchor': anchor,
            **kwargs
        })


def log_broadcast_change(logger: logging.Logger, title: Optional[str],
                         started_at: Optional[int], **kwargs) -> None:
    """Log a new "now playing" announcement (or its disappearance)."""
    with CorrelationContext(stage='broadcast'):
        log_with_fields(logger, 'INFO', 'Broadcast state changed', {
            'title': title,
            'started_at': started_at,
            **kwargs
        })


def log_schedule_rejected(logger: logging.Logger, reason: str, **kwargs) -> None:
    """Log a schedule rejected before persistence."""
    with CorrelationContext(stage='schedule_validation'):
        log_with_fields(logger, 'WARNING', 'Schedule rejected', {
            'reason': reason,
            **kwargs
        })


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs) -> None:
    """Log error with exception details."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }, exc_info=True)
