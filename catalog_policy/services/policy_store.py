"""
PolicyStore: versioned policy configs with a single active version.

Versions are assigned max(version)+1 at creation, starting at 1. Activation
deactivates every row and activates the target inside one transaction; the
partial unique index on is_active backs the invariant at the database level.

Every store failure is logged, rolled back and re-raised as PersistenceError.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError

from catalog_policy.database import get_session, utcnow
from catalog_policy.errors import NotFoundError, PersistenceError
from catalog_policy.engine.policy_config import parse_policy_config, load_default_policy
from catalog_policy.engine.types import PolicyConfig
from catalog_policy.models.policy import CatalogPolicy

logger = logging.getLogger('services.policy_store')


@dataclass(frozen=True)
class StoredPolicy:
    """Detached snapshot of a catalog_policies row."""
    id: int
    version: int
    is_active: bool
    config: PolicyConfig
    created_at: Optional[datetime]
    activated_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: CatalogPolicy) -> 'StoredPolicy':
        return cls(
            id=row.id,
            version=row.version,
            is_active=bool(row.is_active),
            config=parse_policy_config(row.policy_config),
            created_at=row.created_at,
            activated_at=row.activated_at,
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'version': self.version,
            'is_active': self.is_active,
            'policy_config': self.config.to_dict(),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'activated_at': self.activated_at.isoformat() if self.activated_at else None,
        }


def activate_in_session(session, policy_id: int) -> CatalogPolicy:
    """
    Deactivate every policy, then activate policy_id, without committing.

    Shared by activate() and run promotion so both flip the active version in
    the caller's transaction.
    """
    policy = session.get(CatalogPolicy, policy_id)
    if policy is None:
        raise NotFoundError('Policy', policy_id)

    session.execute(
        update(CatalogPolicy)
        .where(CatalogPolicy.id != policy_id)
        .values(is_active=False, activated_at=None)
    )
    session.execute(
        update(CatalogPolicy)
        .where(CatalogPolicy.id == policy_id)
        .values(is_active=True, activated_at=utcnow())
    )
    session.refresh(policy)
    return policy


# ── Reads ─────────────────────────────────────────────────────────────────────

def get_active() -> Optional[StoredPolicy]:
    """The active policy, or None before the first seed."""
    session = get_session()
    try:
        row = session.scalars(
            select(CatalogPolicy).where(CatalogPolicy.is_active.is_(True)).limit(1)
        ).first()
        return StoredPolicy.from_row(row) if row else None
    except SQLAlchemyError as e:
        logger.error("Failed to load active policy", exc_info=True)
        raise PersistenceError('get_active_policy', None, e) from e
    finally:
        session.close()


def get_policy(policy_id: int) -> StoredPolicy:
    session = get_session()
    try:
        row = session.get(CatalogPolicy, policy_id)
        if row is None:
            raise NotFoundError('Policy', policy_id)
        return StoredPolicy.from_row(row)
    except SQLAlchemyError as e:
        logger.error("Failed to load policy %s", policy_id, exc_info=True)
        raise PersistenceError('get_policy', policy_id, e) from e
    finally:
        session.close()


def find_by_version(version: int) -> Optional[StoredPolicy]:
    session = get_session()
    try:
        row = session.scalars(
            select(CatalogPolicy).where(CatalogPolicy.version == version)
        ).first()
        return StoredPolicy.from_row(row) if row else None
    except SQLAlchemyError as e:
        logger.error("Failed to load policy version %s", version, exc_info=True)
        raise PersistenceError('find_policy_by_version', version, e) from e
    finally:
        session.close()


def list_all() -> List[StoredPolicy]:
    """Every policy, newest version first."""
    session = get_session()
    try:
        rows = session.scalars(
            select(CatalogPolicy).order_by(CatalogPolicy.version.desc())
        ).all()
        return [StoredPolicy.from_row(row) for row in rows]
    except SQLAlchemyError as e:
        logger.error("Failed to list policies", exc_info=True)
        raise PersistenceError('list_policies', None, e) from e
    finally:
        session.close()


# ── Writes ────────────────────────────────────────────────────────────────────

def create(config) -> StoredPolicy:
    """
    Validate and store a new, inactive policy version.

    Raises ValidationError before touching the database when the config is bad.
    """
    parsed = parse_policy_config(config)

    session = get_session()
    try:
        current = session.scalar(select(func.max(CatalogPolicy.version)))
        row = CatalogPolicy(
            version=(current or 0) + 1,
            is_active=False,
            policy_config=parsed.to_dict(),
            created_at=utcnow(),
        )
        session.add(row)
        session.commit()
        stored = StoredPolicy.from_row(row)
        logger.info("Created policy %s (version %s)", stored.id, stored.version,
                    extra={'policy_id': stored.id, 'policy_version': stored.version})
        return stored
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to create policy", exc_info=True)
        raise PersistenceError('create_policy', None, e) from e
    finally:
        session.close()


def activate(policy_id: int) -> StoredPolicy:
    """Make policy_id the single active policy. NotFoundError for unknown ids."""
    session = get_session()
    try:
        row = activate_in_session(session, policy_id)
        session.commit()
        stored = StoredPolicy.from_row(row)
        logger.info("Activated policy %s (version %s)", stored.id, stored.version,
                    extra={'policy_id': stored.id, 'policy_version': stored.version})
        return stored
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to activate policy %s", policy_id, exc_info=True)
        raise PersistenceError('activate_policy', policy_id, e) from e
    finally:
        session.close()


def ensure_seeded() -> StoredPolicy:
    """
    Guarantee an active policy.

    An empty store gets the default policy as active version 1. A store with
    policies but none active gets its newest version activated.
    """
    active = get_active()
    if active is not None:
        return active
    existing = list_all()
    if existing:
        logger.warning("No active policy, activating newest version %s", existing[0].version)
        return activate(existing[0].id)
    policy = create(load_default_policy())
    return activate(policy.id)
