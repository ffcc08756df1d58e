"""
Read-only queries against the ingestion-owned catalog tables.

Every helper takes the caller's session; nothing here writes.
"""
from sqlalchemy import select, func

from catalog_policy.config import READY_INGESTION_STATUS
from catalog_policy.models.media_item import MediaItem, MediaStats


def ready_conditions(cutoff=None):
    """Filters for items eligible to be evaluated: ready, not deleted, not newer than cutoff."""
    conditions = [
        MediaItem.ingestion_status == READY_INGESTION_STATUS,
        MediaItem.deleted_at.is_(None),
    ]
    if cutoff is not None:
        conditions.append(MediaItem.updated_at <= cutoff)
    return conditions


def count_ready_items(session, cutoff=None) -> int:
    return session.scalar(
        select(func.count()).select_from(MediaItem).where(*ready_conditions(cutoff))
    ) or 0


def fetch_page(session, cutoff, after_id, limit):
    """Next keyset page of (MediaItem, MediaStats|None) rows, ordered by id."""
    stmt = (
        select(MediaItem, MediaStats)
        .outerjoin(MediaStats, MediaStats.media_item_id == MediaItem.id)
        .where(*ready_conditions(cutoff))
        .order_by(MediaItem.id)
        .limit(limit)
    )
    if after_id is not None:
        stmt = stmt.where(MediaItem.id > after_id)
    return session.execute(stmt).all()


def iter_candidates(session, by_popularity=False, media_type=None, chunk_size=500):
    """
    Stream ready (MediaItem, MediaStats|None) rows.

    by_popularity orders by popularity descending with missing stats last;
    otherwise rows come in id order.
    """
    stmt = (
        select(MediaItem, MediaStats)
        .outerjoin(MediaStats, MediaStats.media_item_id == MediaItem.id)
        .where(*ready_conditions())
    )
    if media_type:
        stmt = stmt.where(MediaItem.type == media_type)
    if by_popularity:
        stmt = stmt.order_by(MediaStats.popularity_score.desc().nulls_last(), MediaItem.id)
    else:
        stmt = stmt.order_by(MediaItem.id)
    return session.execute(stmt.execution_options(yield_per=chunk_size))


def load_titles(session, media_ids):
    """{media_item_id: (title, popularity_score)} for the given ids."""
    out = {}
    ids = list(media_ids)
    for start in range(0, len(ids), 500):
        chunk = ids[start:start + 500]
        rows = session.execute(
            select(MediaItem.id, MediaItem.title, MediaStats.popularity_score)
            .outerjoin(MediaStats, MediaStats.media_item_id == MediaItem.id)
            .where(MediaItem.id.in_(chunk))
        ).all()
        for media_id, title, popularity in rows:
            out[media_id] = (title, popularity)
    return out
