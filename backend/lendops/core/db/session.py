from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache
import importlib

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from lendops.core.config import settings
from lendops.core.db.base import Base

MODEL_MODULES = (
    "lendops.core.events.models",
    "lendops.domain.loans.models",
    "lendops.domain.funds.models",
    "lendops.domain.payments.models",
    "lendops.domain.inspections.models",
    "lendops.domain.alerts.models",
    "lendops.domain.analytics.models",
)


def import_model_modules() -> None:
    for module_name in MODEL_MODULES:
        importlib.import_module(module_name)


@lru_cache(maxsize=1)
def get_engine():
    # Lazy init: importing the app must not require a reachable database.
    engine = create_engine(settings.database_url, pool_pre_ping=True)
    import_model_modules()
    Base.metadata.create_all(bind=engine)
    return engine


@lru_cache(maxsize=1)
def get_session_local() -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, class_=Session)


def get_db() -> Generator[Session, None, None]:
    db = get_session_local()()
    try:
        yield db
    finally:
        db.close()
