"""
CatalogPolicy model: one row per policy version.

At most one row may have is_active = true. The partial unique index enforces
it in the database; PolicyStore.activate() keeps it true in a single
transaction.
"""
from sqlalchemy import Column, Integer, Boolean, DateTime, JSON, Index, text
from sqlalchemy.sql import func

from catalog_policy.database import Base


class CatalogPolicy(Base):
    __tablename__ = 'catalog_policies'

    id = Column(Integer, primary_key=True, autoincrement=True)
    version = Column(Integer, nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=False)
    policy_config = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    activated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            'uq_catalog_policies_single_active', 'is_active',
            unique=True,
            sqlite_where=text('is_active = 1'),
            postgresql_where=text('is_active'),
        ),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'version': self.version,
            'is_active': bool(self.is_active),
            'policy_config': self.policy_config,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'activated_at': self.activated_at.isoformat() if self.activated_at else None,
        }
