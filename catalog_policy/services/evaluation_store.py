"""
EvaluationStore: one row per (media item, policy version).

Writes are true overwrites through INSERT .. ON CONFLICT DO UPDATE, so
re-evaluating an item under the same version with the same inputs leaves an
identical row. A record without a run id keeps the run id already stored.
"""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from catalog_policy.database import get_session
from catalog_policy.errors import PersistenceError
from catalog_policy.engine.types import ELIGIBILITY_STATUSES, EvaluationRecord
from catalog_policy.models.evaluation import MediaCatalogEvaluation

logger = logging.getLogger('services.evaluation_store')

_UPSERT_DIALECTS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}

_CHUNK = 500


def _record_values(record: EvaluationRecord) -> Dict:
    return {
        'media_item_id': record.media_item_id,
        'policy_version': record.policy_version,
        'status': record.status,
        'reasons': list(record.reasons),
        'relevance_score': record.relevance_score,
        'breakout_rule_id': record.breakout_rule_id,
        'evaluated_at': record.evaluated_at,
        'run_id': record.run_id,
    }


def upsert_in_session(session, records: Iterable[EvaluationRecord]) -> int:
    """Upsert records in the caller's transaction. Returns the number of distinct keys written."""
    # last write wins within one statement; Postgres rejects duplicate keys
    by_key = {}
    for record in records:
        by_key[(record.media_item_id, record.policy_version)] = _record_values(record)
    if not by_key:
        return 0

    dialect = session.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise PersistenceError('upsert_evaluations', None,
                               NotImplementedError(f'no upsert support for {dialect}'))

    rows = list(by_key.values())
    for start in range(0, len(rows), _CHUNK):
        stmt = insert(MediaCatalogEvaluation).values(rows[start:start + _CHUNK])
        stmt = stmt.on_conflict_do_update(
            index_elements=['media_item_id', 'policy_version'],
            set_={
                'status': stmt.excluded.status,
                'reasons': stmt.excluded.reasons,
                'relevance_score': stmt.excluded.relevance_score,
                'breakout_rule_id': stmt.excluded.breakout_rule_id,
                'evaluated_at': stmt.excluded.evaluated_at,
                'run_id': func.coalesce(stmt.excluded.run_id, MediaCatalogEvaluation.run_id),
            },
        )
        session.execute(stmt)
    return len(rows)


def upsert_evaluations(records: List[EvaluationRecord]) -> int:
    session = get_session()
    try:
        written = upsert_in_session(session, records)
        session.commit()
        return written
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to upsert %d evaluations", len(records), exc_info=True)
        raise PersistenceError('upsert_evaluations', None, e) from e
    finally:
        session.close()


def find_evaluation(media_item_id: str, policy_version: int) -> Optional[Dict]:
    session = get_session()
    try:
        row = session.get(MediaCatalogEvaluation, (media_item_id, policy_version))
        return row.to_dict() if row else None
    except SQLAlchemyError as e:
        logger.error("Failed to load evaluation %s@%s", media_item_id, policy_version, exc_info=True)
        raise PersistenceError('find_evaluation', media_item_id, e) from e
    finally:
        session.close()


def list_by_policy_version(policy_version: int, status: Optional[str] = None,
                           limit: int = 100, offset: int = 0) -> List[Dict]:
    session = get_session()
    try:
        stmt = select(MediaCatalogEvaluation).where(
            MediaCatalogEvaluation.policy_version == policy_version
        )
        if status:
            stmt = stmt.where(MediaCatalogEvaluation.status == status)
        stmt = stmt.order_by(MediaCatalogEvaluation.media_item_id).limit(limit).offset(offset)
        return [row.to_dict() for row in session.scalars(stmt).all()]
    except SQLAlchemyError as e:
        logger.error("Failed to list evaluations for version %s", policy_version, exc_info=True)
        raise PersistenceError('list_evaluations', policy_version, e) from e
    finally:
        session.close()


def count_by_status(policy_version: int) -> Dict[str, int]:
    """{status: count} for every eligibility status under a version."""
    session = get_session()
    try:
        rows = session.execute(
            select(MediaCatalogEvaluation.status, func.count())
            .where(MediaCatalogEvaluation.policy_version == policy_version)
            .group_by(MediaCatalogEvaluation.status)
        ).all()
        counts = {status: 0 for status in ELIGIBILITY_STATUSES}
        for status, count in rows:
            counts[status] = count
        return counts
    except SQLAlchemyError as e:
        logger.error("Failed to count evaluations for version %s", policy_version, exc_info=True)
        raise PersistenceError('count_evaluations', policy_version, e) from e
    finally:
        session.close()


def current_statuses(session, media_ids: Iterable[str], policy_version: Optional[int]) -> Dict[str, str]:
    """{media_item_id: status} under a version, read in the caller's session."""
    if policy_version is None:
        return {}
    ids = list(media_ids)
    out = {}
    for start in range(0, len(ids), _CHUNK):
        rows = session.execute(
            select(MediaCatalogEvaluation.media_item_id, MediaCatalogEvaluation.status)
            .where(
                MediaCatalogEvaluation.policy_version == policy_version,
                MediaCatalogEvaluation.media_item_id.in_(ids[start:start + _CHUNK]),
            )
        ).all()
        out.update(dict(rows))
    return out
