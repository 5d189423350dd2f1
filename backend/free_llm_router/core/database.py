from collections.abc import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from free_llm_router.core.config import settings


class Base(DeclarativeBase):
    pass


def normalize_db_url(db_url: str) -> str:
    # hosted Postgres URLs come without a driver
    for prefix in ("postgres://", "postgresql://"):
        if db_url.startswith(prefix):
            return "postgresql+psycopg2://" + db_url[len(prefix):]
    return db_url


def _make_engine(db_url: str) -> Engine:
    db_url = normalize_db_url(db_url)
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    return create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)


engine = _make_engine(settings.database_url)
admin_engine = (
    engine
    if settings.admin_database_url == settings.database_url
    else _make_engine(settings.admin_database_url)
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
AdminSessionLocal = sessionmaker(bind=admin_engine, autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_admin_db() -> Iterator[Session]:
    db = AdminSessionLocal()
    try:
        yield db
    finally:
        db.close()
