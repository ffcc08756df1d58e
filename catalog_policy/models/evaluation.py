"""
MediaCatalogEvaluation model: one row per (media item, policy version).

Presence of a row for version V is the authority for "evaluated under V";
absence means not yet evaluated, which is distinct from status = pending.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, Index

from catalog_policy.database import Base


class MediaCatalogEvaluation(Base):
    __tablename__ = 'media_catalog_evaluations'

    media_item_id = Column(Text, primary_key=True)
    policy_version = Column(Integer, primary_key=True)
    status = Column(Text, nullable=False)             # pending/eligible/ineligible/review
    reasons = Column(JSON, nullable=False, default=list)
    relevance_score = Column(Integer, nullable=False, default=0)
    breakout_rule_id = Column(Text, nullable=True)
    evaluated_at = Column(DateTime(timezone=True), nullable=True)
    run_id = Column(Text, nullable=True)

    __table_args__ = (
        Index('ix_media_catalog_evaluations_run_status', 'run_id', 'status'),
        Index('ix_media_catalog_evaluations_version_status', 'policy_version', 'status'),
    )

    def to_dict(self):
        return {
            'media_item_id': self.media_item_id,
            'policy_version': self.policy_version,
            'status': self.status,
            'reasons': list(self.reasons or []),
            'relevance_score': self.relevance_score,
            'breakout_rule_id': self.breakout_rule_id,
            'evaluated_at': self.evaluated_at.isoformat() if self.evaluated_at else None,
            'run_id': self.run_id,
        }
