"""Tests for structured logging configuration."""
import json
import logging
import os
from unittest.mock import patch, MagicMock

import pytest

from catalog_policy.logging_config import configure_logging, JSONFormatter


@pytest.fixture(autouse=True)
def _reset_root_logger():
    """Reset root logger state after each test."""
    root = logging.getLogger()
    original_level = root.level
    original_handlers = root.handlers[:]
    yield
    root.setLevel(original_level)
    root.handlers = original_handlers


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_default_level_is_info(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop('LOG_LEVEL', None)
            configure_logging()
        assert logging.getLogger().level == logging.INFO

    def test_log_level_env_var_changes_level(self):
        with patch.dict(os.environ, {'LOG_LEVEL': 'DEBUG'}):
            configure_logging()
        assert logging.getLogger().level == logging.DEBUG

    def test_log_level_case_insensitive(self):
        with patch.dict(os.environ, {'LOG_LEVEL': 'warning'}):
            configure_logging()
        assert logging.getLogger().level == logging.WARNING

    def test_invalid_log_level_defaults_to_info(self):
        with patch.dict(os.environ, {'LOG_LEVEL': 'NONSENSE'}):
            configure_logging()
        assert logging.getLogger().level == logging.INFO

    def test_text_format_includes_logger_name(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'text', 'LOG_LEVEL': 'INFO'}):
            configure_logging()
        logging.getLogger('services.run_orchestrator').info("run started")
        output = capsys.readouterr().err
        assert 'services.run_orchestrator' in output
        assert 'run started' in output
        assert 'INFO' in output
        assert '[' not in output.split('run started')[1]

    def test_text_format_appends_run_context(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'text', 'LOG_LEVEL': 'INFO'}):
            configure_logging()
        logging.getLogger('jobs').info("batch done", extra={'run_id': 'run-9', 'policy_version': 2})
        output = capsys.readouterr().err
        assert 'batch done [run_id=run-9 policy_version=2]' in output

    def test_json_format_produces_parseable_json(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'json', 'LOG_LEVEL': 'INFO'}):
            configure_logging()
        logging.getLogger('test.json').info("structured log")
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed['level'] == 'INFO'
        assert parsed['logger'] == 'test.json'
        assert parsed['message'] == 'structured log'
        assert 'timestamp' in parsed

    def test_json_format_carries_run_context(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'json', 'LOG_LEVEL': 'INFO'}):
            configure_logging()
        logging.getLogger('test.ctx').info("batch done", extra={'run_id': 'run-1', 'policy_version': 3})
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed['run_id'] == 'run-1'
        assert parsed['policy_version'] == 3
        assert 'media_item_id' not in parsed

    def test_json_format_includes_exception(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'json', 'LOG_LEVEL': 'INFO'}):
            configure_logging()
        test_logger = logging.getLogger('test.exc')
        try:
            raise ValueError("boom")
        except ValueError:
            test_logger.error("failed", exc_info=True)
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed['level'] == 'ERROR'
        assert 'ValueError' in parsed['exception']

    def test_third_party_loggers_quieted_to_warning(self):
        configure_logging()
        for name in ['rq.worker', 'sqlalchemy.engine', 'werkzeug']:
            assert logging.getLogger(name).level == logging.WARNING

    def test_no_duplicate_handlers_on_repeated_calls(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_sets_flask_app_logger_level(self):
        app = MagicMock()
        with patch.dict(os.environ, {'LOG_LEVEL': 'ERROR'}):
            configure_logging(app)
        app.logger.setLevel.assert_called_once_with(logging.ERROR)


class TestJSONFormatter:
    """Tests for the JSONFormatter class."""

    def test_format_basic_record(self):
        formatter = JSONFormatter()
        record = logging.LogRecord(
            name='test', level=logging.INFO, pathname='', lineno=0,
            msg='hello %s', args=('world',), exc_info=None,
        )
        parsed = json.loads(formatter.format(record))
        assert parsed['message'] == 'hello world'
        assert parsed['level'] == 'INFO'
        assert parsed['logger'] == 'test'

    def test_non_serializable_context_is_stringified(self):
        formatter = JSONFormatter()
        record = logging.LogRecord(
            name='test', level=logging.INFO, pathname='', lineno=0,
            msg='x', args=(), exc_info=None,
        )
        record.policy_id = object()
        parsed = json.loads(formatter.format(record))
        assert isinstance(parsed['policy_id'], str)
