"""
Logging Configuration for the Omni container entrypoint

This module configures structured JSON logging for the startup sequence, with
separate loggers for security events (credential material created, auth
providers disabled) and application events. Everything goes to stderr so it
shows up in container logs however stdout is consumed.
"""

import logging
import logging.config
import json
import sys
from datetime import datetime, timezone

from omni_bootstrap import __version__

SERVICE_NAME = 'omni-bootstrap'
SERVICE_VERSION = __version__

_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'exc_info', 'exc_text',
    'stack_info', 'getMessage', 'taskName', 'message',
])


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs logs in JSON format suitable for SIEM ingestion.
    """

    def format(self, record):
        """Format log record as JSON."""

        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'service': SERVICE_NAME,
            'version': SERVICE_VERSION,
        }

        if hasattr(record, 'process') and record.process:
            log_entry['process_id'] = record.process

        if record.exc_info and record.exc_info != (None, None, None):
            try:
                exc_type, exc_value, exc_traceback = record.exc_info
                log_entry['exception'] = {
                    'type': exc_type.__name__ if exc_type else None,
                    'message': str(exc_value) if exc_value else None,
                    'traceback': self.formatException(record.exc_info) if exc_traceback else None
                }
            except (AttributeError, TypeError, ValueError):
                log_entry['exception'] = {
                    'type': 'UnknownException',
                    'message': 'Exception information not available',
                    'traceback': None
                }

        # Add custom fields from the log record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class SecurityEventFilter(logging.Filter):
    """Filter that only allows security events through."""

    def filter(self, record):
        return record.name == 'security_events'


class ApplicationEventFilter(logging.Filter):
    """Filter that allows application events but excludes security events."""

    def filter(self, record):
        return record.name != 'security_events'


def setup_logging(log_level: str = 'INFO', log_format: str = 'json') -> None:
    """
    Set up logging for the entrypoint.

    Args:
        log_level: Level name for the ``omni_bootstrap`` logger.
        log_format: ``json`` for structured output, ``text`` for plain lines.
    """
    log_level = (log_level or 'INFO').upper()
    if log_level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        log_level = 'INFO'
    formatter = 'simple' if (log_format or '').lower() == 'text' else 'json'

    config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'json': {
                '()': JSONFormatter,
            },
            'simple': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            }
        },
        'filters': {
            'security_events': {
                '()': SecurityEventFilter,
            },
            'application_events': {
                '()': ApplicationEventFilter,
            },
        },
        'handlers': {
            'security_events': {
                'class': 'logging.StreamHandler',
                'stream': sys.stderr,
                'formatter': formatter,
                'filters': ['security_events'],
                'level': 'INFO',
            },
            'application_events': {
                'class': 'logging.StreamHandler',
                'stream': sys.stderr,
                'formatter': formatter,
                'filters': ['application_events'],
                'level': log_level,
            },
            'console': {
                'class': 'logging.StreamHandler',
                'stream': sys.stderr,
                'formatter': 'simple',
                'level': 'ERROR',
            }
        },
        'loggers': {
            'security_events': {
                'handlers': ['security_events'],
                'level': 'INFO',
                'propagate': False,
            },
            'omni_bootstrap': {
                'handlers': ['application_events'],
                'level': log_level,
                'propagate': False,
            },
            'entrypoint': {
                'handlers': ['application_events'],
                'level': log_level,
                'propagate': False,
            },
            'urllib3': {
                'handlers': ['application_events'],
                'level': 'WARNING',
                'propagate': False,
            }
        },
        'root': {
            'handlers': ['console'],
            'level': 'ERROR',
        }
    }

    logging.config.dictConfig(config)
