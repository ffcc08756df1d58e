"""
Read-only mapping of the catalog tables owned by the ingestion subsystem.

The engine reads these rows to build MediaSignals and never writes to them.
They are not part of this service's migrations.
"""
from sqlalchemy import Column, Integer, Text, Float, DateTime, JSON, ForeignKey

from catalog_policy.database import Base


class MediaItem(Base):
    __tablename__ = 'media_items'

    id = Column(Text, primary_key=True)
    title = Column(Text, nullable=False)
    type = Column(Text, nullable=False)                 # movie/show
    ingestion_status = Column(Text, nullable=False)     # ready/importing/failed
    origin_countries = Column(JSON, nullable=True)      # ["US", "GB"]
    original_language = Column(Text, nullable=True)
    watch_providers = Column(JSON, nullable=True)       # {region: {flatrate: [{name}], ...}}
    rating_imdb = Column(Float, nullable=True)
    vote_count_imdb = Column(Integer, nullable=True)
    rating_trakt = Column(Float, nullable=True)
    vote_count_trakt = Column(Integer, nullable=True)
    rating_metacritic = Column(Float, nullable=True)
    rating_rotten_tomatoes = Column(Float, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class MediaStats(Base):
    __tablename__ = 'media_stats'

    media_item_id = Column(Text, ForeignKey('media_items.id'), primary_key=True)
    quality_score = Column(Float, nullable=True)        # 0..1
    popularity_score = Column(Float, nullable=True)     # 0..1
    freshness_score = Column(Float, nullable=True)      # 0..1
