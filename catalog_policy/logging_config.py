"""
Logging setup shared by the admin API and the RQ workers.

LOG_FORMAT=json emits one JSON object per line for the log aggregator;
anything else gives a text line. Both carry the run/policy context that
services pass through `extra=`. LOG_LEVEL defaults to INFO. Both variables
are read on every call so a worker can be reconfigured per job.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone


# Context attributes services attach via extra={...}
CONTEXT_FIELDS = ('run_id', 'policy_id', 'policy_version', 'media_item_id')

# Libraries that are chatty at INFO
_QUIET_LOGGERS = {
    'rq.worker': logging.WARNING,
    'sqlalchemy.engine': logging.WARNING,
    'werkzeug': logging.WARNING,
    'alembic.runtime.migration': logging.INFO,
}

TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s: %(message)s%(context)s'
TEXT_DATEFMT = '%Y-%m-%d %H:%M:%S'


def record_context(record: logging.LogRecord) -> dict:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, context fields at top level."""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ContextTextFormatter(logging.Formatter):
    """Text lines with a trailing ` [run_id=... policy_version=...]` when context is set."""

    def format(self, record):
        context = record_context(record)
        record.context = (' [' + ' '.join(f'{k}={v}' for k, v in context.items()) + ']') if context else ''
        return super().format(record)


def _resolve_level() -> int:
    level = logging.getLevelName(os.getenv('LOG_LEVEL', 'INFO').upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(app=None):
    """
    (Re)install the single root handler.

    Safe to call repeatedly: create_app() calls it once, every RQ job calls
    it on entry.
    """
    level = _resolve_level()
    use_json = os.getenv('LOG_FORMAT', 'text').lower() == 'json'

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if use_json
                         else ContextTextFormatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    if app is not None:
        app.logger.setLevel(level)
