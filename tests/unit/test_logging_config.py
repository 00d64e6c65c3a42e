"""
Tests for logging configuration functionality.

This module tests the JSON formatter, the security/application event
filters and the dictConfig produced by setup_logging.
"""

import pytest
import logging
import json
import sys
from unittest.mock import patch
from omni_bootstrap import __version__
from omni_bootstrap.utils.logging_config import (
    JSONFormatter,
    SecurityEventFilter,
    ApplicationEventFilter,
    setup_logging,
)

CONFIGURED_LOGGERS = ('security_events', 'omni_bootstrap', 'entrypoint', 'urllib3')


@pytest.fixture
def restore_logging():
    """Undo setup_logging so later tests still see records through caplog."""
    root = logging.getLogger()
    saved_level = root.level
    yield
    for name in CONFIGURED_LOGGERS:
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
    for handler in list(root.handlers):
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(saved_level)


def _record(name='omni_bootstrap.provisioner', level=logging.INFO, msg='Test message', exc_info=None):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname='/test/path.py',
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info
    )


class TestJSONFormatter:
    """Tests for the JSONFormatter class."""

    def test_format_basic_record(self):
        """Test basic log record formatting."""
        parsed = json.loads(JSONFormatter().format(_record()))

        assert parsed['level'] == 'INFO'
        assert parsed['logger'] == 'omni_bootstrap.provisioner'
        assert parsed['message'] == 'Test message'
        assert parsed['service'] == 'omni-bootstrap'
        assert parsed['version'] == __version__
        assert 'timestamp' in parsed

    def test_format_with_malformed_exc_info(self):
        """Test formatting with malformed exception info."""
        record = _record(level=logging.ERROR, msg='Test error')
        record.exc_info = ("not", "a", "valid", "tuple")

        parsed = json.loads(JSONFormatter().format(record))

        assert parsed['message'] == 'Test error'
        assert parsed['exception']['type'] == 'UnknownException'
        assert parsed['exception']['message'] == 'Exception information not available'

    def test_format_with_valid_exception(self):
        """Test formatting with valid exception info."""
        try:
            raise ValueError("Test exception")
        except ValueError:
            record = _record(level=logging.ERROR, msg='Test error with exception', exc_info=sys.exc_info())

        parsed = json.loads(JSONFormatter().format(record))

        assert parsed['exception']['type'] == 'ValueError'
        assert parsed['exception']['message'] == 'Test exception'
        assert 'Traceback' in parsed['exception']['traceback']

    def test_format_with_custom_fields(self):
        """Test extra fields from security events are included."""
        record = _record(name='security_events', msg='GPG key generated')
        record.event_type = 'encryption_key_generated'
        record.key_length = 4096

        parsed = json.loads(JSONFormatter().format(record))

        assert parsed['event_type'] == 'encryption_key_generated'
        assert parsed['key_length'] == 4096


class TestLoggingFilters:
    """Tests for logging filter classes."""

    def test_security_event_filter(self):
        filter_obj = SecurityEventFilter()
        assert filter_obj.filter(_record(name='security_events')) is True
        assert filter_obj.filter(_record(name='omni_bootstrap')) is False

    def test_application_event_filter(self):
        filter_obj = ApplicationEventFilter()
        assert filter_obj.filter(_record(name='omni_bootstrap.utils.tls_setup')) is True
        assert filter_obj.filter(_record(name='security_events')) is False


class TestSetupLogging:
    """Tests for the setup_logging function."""

    def test_setup_logging_default(self):
        with patch('logging.config.dictConfig') as mock_dict_config:
            setup_logging()

        config = mock_dict_config.call_args[0][0]
        assert config['loggers']['omni_bootstrap']['level'] == 'INFO'
        assert config['handlers']['application_events']['formatter'] == 'json'
        assert config['loggers']['security_events']['propagate'] is False

    def test_all_handlers_use_stderr(self):
        with patch('logging.config.dictConfig') as mock_dict_config:
            setup_logging()

        config = mock_dict_config.call_args[0][0]
        assert all(h['stream'] is sys.stderr for h in config['handlers'].values())

    def test_text_format_and_level(self):
        with patch('logging.config.dictConfig') as mock_dict_config:
            setup_logging('debug', 'text')

        config = mock_dict_config.call_args[0][0]
        assert config['loggers']['omni_bootstrap']['level'] == 'DEBUG'
        assert config['handlers']['application_events']['formatter'] == 'simple'

    def test_unknown_level_falls_back_to_info(self):
        with patch('logging.config.dictConfig') as mock_dict_config:
            setup_logging('verbose')

        assert mock_dict_config.call_args[0][0]['loggers']['omni_bootstrap']['level'] == 'INFO'

    def test_emits_json_to_stderr(self, restore_logging, capsys):
        setup_logging('INFO', 'json')

        logging.getLogger('omni_bootstrap.orchestrator').info('Startup state: Init -> Validating')
        logging.getLogger('security_events').warning('Self-signed certificate installed',
                                                     extra={'event_type': 'certificate_issued'})

        captured = capsys.readouterr()
        assert captured.out == ''
        lines = [json.loads(line) for line in captured.err.splitlines()]
        assert lines[0]['message'] == 'Startup state: Init -> Validating'
        assert lines[1]['logger'] == 'security_events'
        assert lines[1]['event_type'] == 'certificate_issued'
