"""
CatalogEvaluationRun model: one row per batch re-evaluation.

The status column may still hold legacy labels on historical rows; callers go
through engine.run_status.normalize_run_status() before reasoning about it.
Counter columns are a cache written only by RunAggregator.sync_run_counters().
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey, Index
from sqlalchemy.sql import func

from catalog_policy.database import Base


class CatalogEvaluationRun(Base):
    __tablename__ = 'catalog_evaluation_runs'

    id = Column(Text, primary_key=True)
    status = Column(Text, nullable=False, default='running')
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    finished_at = Column(DateTime(timezone=True), nullable=True)
    cursor = Column(Text, nullable=True)                # last media_item_id handed out
    target_policy_id = Column(Integer, ForeignKey('catalog_policies.id'), nullable=False)
    target_policy_version = Column(Integer, nullable=False)
    total_ready_snapshot = Column(Integer, nullable=False, default=0)
    snapshot_cutoff = Column(DateTime(timezone=True), nullable=False)
    processed = Column(Integer, nullable=False, default=0)
    eligible = Column(Integer, nullable=False, default=0)
    ineligible = Column(Integer, nullable=False, default=0)
    pending = Column(Integer, nullable=False, default=0)
    review = Column(Integer, nullable=False, default=0)
    errors = Column(Integer, nullable=False, default=0)
    error_sample = Column(JSON, nullable=False, default=list)
    promoted_at = Column(DateTime(timezone=True), nullable=True)
    promoted_by = Column(Text, nullable=True)

    __table_args__ = (
        Index('ix_catalog_evaluation_runs_status_started', 'status', 'started_at'),
    )
