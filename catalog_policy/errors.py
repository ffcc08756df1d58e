"""
Error taxonomy for the policy engine.

ValidationError and NotFoundError go straight back to the caller.
PersistenceError wraps a store failure with the operation and affected id and
is always re-raised. AnomalyError is recorded on the run, never raised out of
finalization.
"""
from typing import List, Optional


class CatalogPolicyError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(CatalogPolicyError):
    """Bad policy config or dry-run parameters. Never persisted."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors) if errors else [message]
        super().__init__(message)


class NotFoundError(CatalogPolicyError):
    """Unknown policy or run id."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' not found")


class PersistenceError(CatalogPolicyError):
    """Underlying store failure, with enough context to diagnose."""

    def __init__(self, operation: str, entity_id=None, cause: Optional[BaseException] = None):
        self.operation = operation
        self.entity_id = entity_id
        self.cause = cause
        detail = f': {cause}' if cause is not None else ''
        target = f' ({entity_id})' if entity_id is not None else ''
        super().__init__(f"{operation} failed{target}{detail}")


class AnomalyError(CatalogPolicyError):
    """Processed count exceeds the run's snapshot total."""

    kind = 'ANOMALY_PROCESSED_GT_TOTAL'

    def __init__(self, run_id: str, processed: int, total: int):
        self.run_id = run_id
        self.processed = processed
        self.total = total
        super().__init__(
            f"Run {run_id} processed {processed} items but snapshot total is {total}"
        )

    def to_sample(self, timestamp: str) -> dict:
        return {
            'type': self.kind,
            'message': str(self),
            'processed': self.processed,
            'total': self.total,
            'timestamp': timestamp,
        }


class InvalidRunStateTransitionError(CatalogPolicyError):
    """Lifecycle action not allowed from the run's current state."""

    def __init__(self, run_id: str, action: str, state: str):
        self.run_id = run_id
        self.action = action
        self.state = state
        super().__init__(f"Cannot {action} run '{run_id}' in state '{state}'")


class InvalidRunStatusError(CatalogPolicyError):
    """Stored run status that is neither current nor a known legacy label."""

    def __init__(self, raw):
        self.raw = raw
        super().__init__(f"Unknown run status: {raw!r}")
