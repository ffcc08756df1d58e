"""Shared test fixtures."""
import importlib
from datetime import timedelta
from unittest.mock import patch, MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from catalog_policy.database import Base, utcnow


MODEL_MODULES = [
    'catalog_policy.models.policy',
    'catalog_policy.models.evaluation',
    'catalog_policy.models.evaluation_run',
    'catalog_policy.models.media_item',
]

# Every module that does `from catalog_policy.database import get_session`
SESSION_USERS = [
    'catalog_policy.database',
    'catalog_policy.services.policy_store',
    'catalog_policy.services.evaluation_store',
    'catalog_policy.services.run_aggregator',
    'catalog_policy.services.run_orchestrator',
    'catalog_policy.services.dry_run',
    'catalog_policy.services.run_diff',
    'catalog_policy.services.catalog_reads',
    'catalog_policy.routes.health',
]


BASE_POLICY = {
    'allowed_countries': ['US', 'GB'],
    'blocked_countries': ['RU'],
    'blocked_country_mode': 'ANY',
    'allowed_languages': ['en'],
    'blocked_languages': ['ru'],
    'global_providers': ['Netflix'],
    'breakout_rules': [],
    'eligibility_mode': 'STRICT',
    'homepage': {'min_relevance_score': 40},
}


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created.

    StaticPool keeps one connection so every session sees the same database.
    """
    engine = create_engine(
        'sqlite://',
        poolclass=StaticPool,
        connect_args={'check_same_thread': False},
    )
    for module in MODEL_MODULES:
        importlib.import_module(module)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def TestSession(db_engine):
    return sessionmaker(bind=db_engine)


@pytest.fixture(autouse=True)
def patch_get_session(TestSession):
    """
    Route get_session() calls in every service module to the test engine.

    Each call returns a new session so close() in production code does not
    interfere with the session a test reads through.
    """
    patchers = [patch(f'{module}.get_session', side_effect=lambda: TestSession())
                for module in SESSION_USERS]
    for p in patchers:
        p.start()
    yield TestSession
    for p in reversed(patchers):
        p.stop()


@pytest.fixture
def db_session(TestSession):
    """Session for assertions. Call expire_all() before re-reading rows."""
    session = TestSession()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def mock_redis():
    """Mock Redis client."""
    mock = MagicMock()
    mock.ping.return_value = True
    with patch('catalog_policy.extensions.redis_client', mock):
        yield mock


@pytest.fixture
def mock_queue():
    """Mock RQ queue returned by catalog_policy.jobs._get_queue()."""
    queue = MagicMock()
    queue.enqueue.return_value = MagicMock(id='job-1')
    with patch('catalog_policy.jobs._get_queue', return_value=queue):
        yield queue


@pytest.fixture
def app():
    """Flask test app."""
    from catalog_policy import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


# ── Row factories ─────────────────────────────────────────────────────────────

@pytest.fixture
def policy_config():
    """Fresh copy of a small STRICT policy: US/GB + en allowed, RU/ru blocked."""
    def _make(**overrides):
        config = {k: (list(v) if isinstance(v, list) else dict(v) if isinstance(v, dict) else v)
                  for k, v in BASE_POLICY.items()}
        config.update(overrides)
        return config
    return _make


@pytest.fixture
def make_media_item(TestSession):
    """Insert a ready media item (and stats unless stats=None). Returns its id."""
    from catalog_policy.models.media_item import MediaItem, MediaStats

    def _make(media_id, stats=(0.8, 0.6, 0.5), **overrides):
        defaults = dict(
            id=media_id,
            title=f'Title {media_id}',
            type='movie',
            ingestion_status='ready',
            origin_countries=['US'],
            original_language='en',
            watch_providers={'US': {'flatrate': [{'name': 'Netflix'}]}},
            rating_imdb=7.5,
            vote_count_imdb=1000,
            rating_trakt=None,
            vote_count_trakt=None,
            rating_metacritic=None,
            rating_rotten_tomatoes=None,
            updated_at=utcnow() - timedelta(hours=1),
            deleted_at=None,
        )
        defaults.update(overrides)
        session = TestSession()
        try:
            session.add(MediaItem(**defaults))
            if stats is not None:
                quality, popularity, freshness = stats
                session.add(MediaStats(media_item_id=media_id, quality_score=quality,
                                       popularity_score=popularity, freshness_score=freshness))
            session.commit()
        finally:
            session.close()
        return media_id
    return _make


@pytest.fixture
def make_policy(TestSession, policy_config):
    """Insert a catalog_policies row directly. Returns its id."""
    from catalog_policy.models.policy import CatalogPolicy

    def _make(version, config=None, active=False):
        session = TestSession()
        try:
            row = CatalogPolicy(
                version=version,
                is_active=active,
                policy_config=config if config is not None else policy_config(),
                created_at=utcnow(),
                activated_at=utcnow() if active else None,
            )
            session.add(row)
            session.commit()
            return row.id
        finally:
            session.close()
    return _make


@pytest.fixture
def make_run(TestSession):
    """Insert a catalog_evaluation_runs row directly. Returns its id."""
    from catalog_policy.models.evaluation_run import CatalogEvaluationRun

    def _make(run_id, policy_id, policy_version, **overrides):
        now = utcnow()
        defaults = dict(
            id=run_id,
            status='running',
            started_at=now,
            target_policy_id=policy_id,
            target_policy_version=policy_version,
            total_ready_snapshot=0,
            snapshot_cutoff=now,
            error_sample=[],
        )
        defaults.update(overrides)
        session = TestSession()
        try:
            session.add(CatalogEvaluationRun(**defaults))
            session.commit()
        finally:
            session.close()
        return run_id
    return _make


@pytest.fixture
def make_evaluation(TestSession):
    """Insert a media_catalog_evaluations row directly."""
    from catalog_policy.models.evaluation import MediaCatalogEvaluation

    def _make(media_id, version, status='eligible', reasons=None, run_id=None, relevance_score=50):
        session = TestSession()
        try:
            session.add(MediaCatalogEvaluation(
                media_item_id=media_id,
                policy_version=version,
                status=status,
                reasons=reasons if reasons is not None else [],
                relevance_score=relevance_score,
                evaluated_at=utcnow(),
                run_id=run_id,
            ))
            session.commit()
        finally:
            session.close()
    return _make
