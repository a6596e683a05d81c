import logging

from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import text

from .config import DATABASE_URL

logger = logging.getLogger(__name__)

_is_sqlite = DATABASE_URL.startswith("sqlite")
# concurrent writers wait on the sqlite lock instead of failing fast
_connect_args = {"check_same_thread": False, "timeout": 30} if _is_sqlite else {}

engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True, connect_args=_connect_args)


def init_db():
    from .models import (  # noqa: F401
        Branch, User, Customer, Building, Report, Offer, ServiceAgreement,
        AcceptanceRecord, AuditEvent, Receipt,
    )
    SQLModel.metadata.create_all(engine)
    if _is_sqlite:
        with engine.begin() as conn:
            conn.execute(text("PRAGMA journal_mode=WAL"))
    logger.info("database initialised")


def get_session():
    with Session(engine) as session:
        yield session
