# src/freight_rating/db.py
from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy import create_engine, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .errors import InternalError
from .settings import settings

logger = logging.getLogger(__name__)

# psycopg3 uses 'postgresql+psycopg' instead of 'postgresql+psycopg2'
def get_sqlalchemy_url():
    url = settings.sqlalchemy_url
    if 'postgresql+psycopg2' in url:
        url = url.replace('postgresql+psycopg2', 'postgresql+psycopg')
    elif url.startswith('postgresql://'):
        url = url.replace('postgresql://', 'postgresql+psycopg://')
    return url


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # Sync endpoints run on a threadpool; sqlite needs cross-thread access
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=300,
        connect_args={
            "options": "-c statement_timeout=30000",  # 30 second timeout
            # Disable psycopg's automatic server-side prepared statements
            # to avoid duplicate statement errors across pooled connections.
            "prepare_threshold": 0,
        },
    )


engine = build_engine(get_sqlalchemy_url())

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def seed_freight_classes(session: Session) -> int:
    """Insert the standard NMFC classes when the table is empty. Returns rows added."""
    from .models import FreightClass
    from .rules.freight_class import STANDARD_CLASSES

    if session.execute(select(FreightClass.id).limit(1)).first() is not None:
        return 0
    for fc in STANDARD_CLASSES:
        session.add(FreightClass(
            code=fc.code,
            description=fc.description,
            density_min=fc.density_min,
            density_max=fc.density_max,
        ))
    session.commit()
    return len(STANDARD_CLASSES)


def init_db(bind: Engine | None = None) -> None:
    # Safe if tables already exist
    from .models import Base

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    with Session(bind) as session:
        added = seed_freight_classes(session)
    if added:
        logger.info("Seeded %d standard freight classes", added)


def activate_carrier_config(session: Session, config: Mapping[str, Any]) -> int:
    """Store ``config`` as the carrier's only enabled rate card.

    Older configs for the same carrier are disabled in the same transaction.
    Returns how many were disabled.
    """
    from .models import CarrierRateConfig

    try:
        result = session.execute(
            update(CarrierRateConfig)
            .where(CarrierRateConfig.carrier_id == config["carrier_id"], CarrierRateConfig.enabled.is_(True))
            .values(enabled=False)
            .execution_options(synchronize_session=False)
        )
        session.add(CarrierRateConfig(**config))
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Storing carrier config %s failed", config.get("id"))
        raise InternalError(f"could not store carrier config for {config['carrier_id']}") from exc
    if result.rowcount:
        logger.info("Disabled %d older configs for carrier %s", result.rowcount, config["carrier_id"])
    return result.rowcount
