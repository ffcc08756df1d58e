"""Tests for catalog_policy.services.evaluation_store -- idempotent upserts."""
from unittest.mock import MagicMock

import pytest

from catalog_policy.database import utcnow
from catalog_policy.engine.types import EvaluationRecord
from catalog_policy.errors import PersistenceError
from catalog_policy.services.evaluation_store import (
    count_by_status,
    current_statuses,
    find_evaluation,
    list_by_policy_version,
    upsert_evaluations,
    upsert_in_session,
)


def _record(media_id='m-1', version=1, status='eligible', run_id='run-1', **overrides):
    defaults = dict(
        media_item_id=media_id,
        policy_version=version,
        status=status,
        reasons=['ALLOWED_COUNTRY', 'ALLOWED_LANGUAGE'],
        relevance_score=55,
        breakout_rule_id=None,
        evaluated_at=utcnow(),
        run_id=run_id,
    )
    defaults.update(overrides)
    return EvaluationRecord(**defaults)


class TestUpsert:

    def test_inserts_new_rows(self):
        assert upsert_evaluations([_record('m-1'), _record('m-2')]) == 2
        assert find_evaluation('m-1', 1)['status'] == 'eligible'

    def test_empty_batch_is_noop(self):
        assert upsert_evaluations([]) == 0

    def test_same_input_twice_leaves_identical_row(self):
        evaluated_at = utcnow()
        record = _record(evaluated_at=evaluated_at)
        upsert_evaluations([record])
        first = find_evaluation('m-1', 1)
        upsert_evaluations([record])
        assert find_evaluation('m-1', 1) == first
        assert count_by_status(1)['eligible'] == 1

    def test_overwrites_existing_row(self):
        upsert_evaluations([_record()])
        upsert_evaluations([_record(status='ineligible', reasons=['BLOCKED_COUNTRY'],
                                    relevance_score=10, run_id='run-2')])
        row = find_evaluation('m-1', 1)
        assert row['status'] == 'ineligible'
        assert row['reasons'] == ['BLOCKED_COUNTRY']
        assert row['relevance_score'] == 10
        assert row['run_id'] == 'run-2'

    def test_missing_run_id_keeps_stored_run_id(self):
        upsert_evaluations([_record(run_id='run-1')])
        upsert_evaluations([_record(status='review', run_id=None)])
        row = find_evaluation('m-1', 1)
        assert row['status'] == 'review'
        assert row['run_id'] == 'run-1'

    def test_versions_are_independent(self):
        upsert_evaluations([_record(version=1), _record(version=2, status='pending')])
        assert find_evaluation('m-1', 1)['status'] == 'eligible'
        assert find_evaluation('m-1', 2)['status'] == 'pending'

    def test_duplicate_keys_in_one_batch_last_wins(self):
        written = upsert_evaluations([_record(status='pending'), _record(status='review')])
        assert written == 1
        assert find_evaluation('m-1', 1)['status'] == 'review'

    def test_unsupported_dialect_raises_persistence_error(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = 'oracle'
        with pytest.raises(PersistenceError):
            upsert_in_session(session, [_record()])
        session.execute.assert_not_called()


class TestReads:

    def test_find_missing_returns_none(self):
        assert find_evaluation('nope', 1) is None

    def test_list_by_version_filters_status(self):
        upsert_evaluations([_record('m-1'), _record('m-2', status='pending'), _record('m-3')])
        rows = list_by_policy_version(1, status='eligible')
        assert [r['media_item_id'] for r in rows] == ['m-1', 'm-3']

    def test_list_by_version_paginates(self):
        upsert_evaluations([_record(f'm-{i}') for i in range(5)])
        rows = list_by_policy_version(1, limit=2, offset=2)
        assert [r['media_item_id'] for r in rows] == ['m-2', 'm-3']

    def test_count_by_status_includes_zeroes(self):
        upsert_evaluations([_record('m-1'), _record('m-2', status='review')])
        assert count_by_status(1) == {'pending': 0, 'eligible': 1, 'ineligible': 0, 'review': 1}

    def test_current_statuses(self, db_session):
        upsert_evaluations([_record('m-1'), _record('m-2', status='ineligible')])
        statuses = current_statuses(db_session, ['m-1', 'm-2', 'm-9'], 1)
        assert statuses == {'m-1': 'eligible', 'm-2': 'ineligible'}

    def test_current_statuses_without_version(self, db_session):
        assert current_statuses(db_session, ['m-1'], None) == {}
