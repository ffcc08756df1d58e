"""
Public read path and operator listing over the active policy's evaluations.

matches_read_mode() is the only admission rule:
    catalog    eligible items
    freshness  eligible items, plus ineligible items whose only reason is
               MISSING_GLOBAL_SIGNALS
"""
import logging
from itertools import islice
from typing import Dict, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError

from catalog_policy.database import get_session
from catalog_policy.errors import PersistenceError, ValidationError
from catalog_policy.engine.policy_config import parse_policy_config
from catalog_policy.engine.types import ELIGIBLE, INELIGIBLE, MISSING_GLOBAL_SIGNALS
from catalog_policy.models.evaluation import MediaCatalogEvaluation
from catalog_policy.models.media_item import MediaItem
from catalog_policy.models.policy import CatalogPolicy
from catalog_policy.services.catalog_source import ready_conditions

logger = logging.getLogger('services.catalog_reads')

READ_MODE_CATALOG = 'catalog'
READ_MODE_FRESHNESS = 'freshness'
READ_MODES = [READ_MODE_CATALOG, READ_MODE_FRESHNESS]

UNEVALUATED = 'unevaluated'


def matches_read_mode(status: str, reasons, mode: str = READ_MODE_CATALOG) -> bool:
    if status == ELIGIBLE:
        return True
    if mode == READ_MODE_FRESHNESS and status == INELIGIBLE:
        return list(reasons or []) == [MISSING_GLOBAL_SIGNALS]
    return False


def _item_dict(item: MediaItem, evaluation: Optional[MediaCatalogEvaluation]) -> Dict:
    return {
        'media_item_id': item.id,
        'title': item.title,
        'type': item.type,
        'status': evaluation.status if evaluation else UNEVALUATED,
        'reasons': list(evaluation.reasons or []) if evaluation else [],
        'relevance_score': evaluation.relevance_score if evaluation else None,
        'breakout_rule_id': evaluation.breakout_rule_id if evaluation else None,
    }


def _active_policy(session) -> Optional[CatalogPolicy]:
    return session.scalars(
        select(CatalogPolicy).where(CatalogPolicy.is_active.is_(True)).limit(1)
    ).first()


def _visible(session, version: int, mode: str, min_relevance: int = 0):
    statuses = [ELIGIBLE, INELIGIBLE] if mode == READ_MODE_FRESHNESS else [ELIGIBLE]
    stmt = (
        select(MediaItem, MediaCatalogEvaluation)
        .join(MediaCatalogEvaluation, and_(
            MediaCatalogEvaluation.media_item_id == MediaItem.id,
            MediaCatalogEvaluation.policy_version == version,
        ))
        .where(*ready_conditions())
        .where(MediaCatalogEvaluation.status.in_(statuses))
        .order_by(MediaCatalogEvaluation.relevance_score.desc(), MediaItem.id)
    )
    if min_relevance:
        stmt = stmt.where(MediaCatalogEvaluation.relevance_score >= min_relevance)
    # JSON equality is not portable across dialects, so reasons are checked here
    for item, evaluation in session.execute(stmt.execution_options(yield_per=500)):
        if matches_read_mode(evaluation.status, evaluation.reasons, mode):
            yield item, evaluation


def list_visible_items(mode: str = READ_MODE_CATALOG, limit: int = 50, offset: int = 0) -> Dict:
    """User-facing listing under the active policy version, relevance first."""
    if mode not in READ_MODES:
        raise ValidationError(f'mode must be one of {READ_MODES}')

    session = get_session()
    try:
        policy = _active_policy(session)
        if policy is None:
            return {'policy_version': None, 'mode': mode, 'items': []}
        rows = islice(_visible(session, policy.version, mode), offset, offset + limit)
        items = [_item_dict(item, evaluation) for item, evaluation in rows]
        return {'policy_version': policy.version, 'mode': mode, 'items': items}
    except SQLAlchemyError as e:
        logger.error("Failed to list visible items", exc_info=True)
        raise PersistenceError('list_visible_items', mode, e) from e
    finally:
        session.close()


def homepage_items(limit: int = 20) -> Dict:
    """Eligible items at or above the active policy's homepage relevance threshold."""
    session = get_session()
    try:
        policy = _active_policy(session)
        if policy is None:
            return {'policy_version': None, 'min_relevance_score': None, 'items': []}
        threshold = parse_policy_config(policy.policy_config).homepage_min_relevance_score
        rows = islice(_visible(session, policy.version, READ_MODE_CATALOG, threshold), limit)
        return {
            'policy_version': policy.version,
            'min_relevance_score': threshold,
            'items': [_item_dict(item, evaluation) for item, evaluation in rows],
        }
    except SQLAlchemyError as e:
        logger.error("Failed to load homepage items", exc_info=True)
        raise PersistenceError('homepage_items', None, e) from e
    finally:
        session.close()


def list_admin_items(status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[Dict]:
    """
    Every ready item with its evaluation under the active version.

    Not filtered by eligibility. status narrows to one eligibility status, or
    to 'unevaluated' for items with no row under the active version.
    """
    session = get_session()
    try:
        policy = _active_policy(session)
        version = policy.version if policy else None
        stmt = (
            select(MediaItem, MediaCatalogEvaluation)
            .outerjoin(MediaCatalogEvaluation, and_(
                MediaCatalogEvaluation.media_item_id == MediaItem.id,
                MediaCatalogEvaluation.policy_version == version,
            ))
            .where(*ready_conditions())
            .order_by(MediaItem.id)
            .limit(limit)
            .offset(offset)
        )
        if status == UNEVALUATED:
            stmt = stmt.where(MediaCatalogEvaluation.media_item_id.is_(None))
        elif status:
            stmt = stmt.where(MediaCatalogEvaluation.status == status)
        return [_item_dict(item, evaluation) for item, evaluation in session.execute(stmt).all()]
    except SQLAlchemyError as e:
        logger.error("Failed to list admin items", exc_info=True)
        raise PersistenceError('list_admin_items', status, e) from e
    finally:
        session.close()
