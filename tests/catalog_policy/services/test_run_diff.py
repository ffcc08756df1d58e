"""Tests for catalog_policy.services.run_diff."""
import pytest

from catalog_policy.errors import InvalidRunStateTransitionError, NotFoundError
from catalog_policy.services.run_diff import compute_run_diff, is_improvement, is_regression


@pytest.mark.parametrize('old,new,regression,improvement', [
    ('eligible', 'ineligible', True, False),
    ('eligible', 'none', True, False),
    ('ineligible', 'eligible', False, True),
    ('none', 'eligible', False, True),
    ('eligible', 'eligible', False, False),
    ('pending', 'review', False, False),
])
def test_classification(old, new, regression, improvement):
    assert is_regression(old, new) is regression
    assert is_improvement(old, new) is improvement


@pytest.fixture
def diff_setup(make_policy, make_run, make_evaluation, make_media_item):
    make_policy(1, active=True)
    candidate = make_policy(2)
    run_id = make_run('run-d', candidate, 2, status='prepared')
    make_media_item('a', stats=(0.5, 0.3, 0.5))
    make_media_item('f', stats=(0.5, 0.9, 0.5))
    make_media_item('b')
    rows = [
        ('a', 'eligible', 'ineligible'),
        ('b', 'ineligible', 'eligible'),
        ('c', 'eligible', 'eligible'),
        ('d', 'ineligible', 'pending'),
        ('e', None, 'eligible'),
        ('f', 'eligible', None),
    ]
    for media_id, old, new in rows:
        if old:
            make_evaluation(media_id, 1, old)
        if new:
            make_evaluation(media_id, 2, new, run_id=run_id)
    return run_id


def test_counts(diff_setup):
    report = compute_run_diff(diff_setup)
    assert report.current_policy_version == 1
    assert report.target_policy_version == 2
    assert report.counts.regressions == 2
    assert report.counts.improvements == 2
    assert report.counts.unchanged == 1
    assert report.counts.still_ineligible == 1


def test_samples_sorted_by_popularity(diff_setup):
    report = compute_run_diff(diff_setup)
    assert [s.media_item_id for s in report.top_regressions] == ['f', 'a']
    assert report.top_regressions[0].new_status == 'none'
    assert report.top_regressions[0].title == 'Title f'


def test_unknown_titles_are_blank(diff_setup):
    report = compute_run_diff(diff_setup)
    by_id = {s.media_item_id: s for s in report.top_improvements}
    assert by_id['e'].title == ''
    assert by_id['e'].old_status == 'none'


def test_sample_size_caps_lists(diff_setup):
    report = compute_run_diff(diff_setup, sample_size=1)
    assert len(report.top_regressions) == 1
    assert len(report.top_improvements) == 1


def test_to_dict(diff_setup):
    data = compute_run_diff(diff_setup).to_dict()
    assert data['counts']['regressions'] == 2
    assert isinstance(data['top_improvements'], list)


def test_unknown_run():
    with pytest.raises(NotFoundError):
        compute_run_diff('missing')


def test_running_run_cannot_be_diffed(make_policy, make_run):
    policy_id = make_policy(2)
    make_run('run-r', policy_id, 2)
    with pytest.raises(InvalidRunStateTransitionError):
        compute_run_diff('run-r')
