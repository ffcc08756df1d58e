"""
Run status vocabulary and the one place legacy labels are translated.

Historical rows may carry labels from an earlier scheme. Everything above the
store reads statuses through normalize_run_status(); guarded updates that must
also match legacy rows use stored_labels().
"""
from typing import List

from catalog_policy.errors import InvalidRunStatusError

RUNNING = 'running'
PREPARED = 'prepared'
FAILED = 'failed'
CANCELLED = 'cancelled'
PROMOTED = 'promoted'

RUN_STATUSES = [RUNNING, PREPARED, FAILED, CANCELLED, PROMOTED]
TERMINAL_RUN_STATUSES = {FAILED, CANCELLED, PROMOTED}
CANCELLABLE_RUN_STATUSES = {RUNNING, PREPARED}
PROMOTABLE_RUN_STATUSES = {PREPARED}
DIFFABLE_RUN_STATUSES = {PREPARED, PROMOTED}

# legacy label → current label
RUN_STATUS_ALIASES = {
    'pending': RUNNING,
    'completed': PREPARED,
    'success': PREPARED,
}


def normalize_run_status(raw: str) -> str:
    """Map a stored label to the current vocabulary. Unknown labels raise."""
    if raw in RUN_STATUSES:
        return raw
    if raw in RUN_STATUS_ALIASES:
        return RUN_STATUS_ALIASES[raw]
    raise InvalidRunStatusError(raw)


def stored_labels(status: str) -> List[str]:
    """Every label that may be stored for a current status, current label first."""
    return [status] + [legacy for legacy, current in RUN_STATUS_ALIASES.items() if current == status]
