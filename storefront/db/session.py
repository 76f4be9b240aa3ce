from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.core.config import settings

class Base(DeclarativeBase): pass

def make_engine(dsn: str) -> Engine:
    if dsn.startswith('sqlite'):
        kwargs = {'connect_args': {'check_same_thread': False}}
        if dsn in ('sqlite://', 'sqlite:///:memory:'):
            kwargs['poolclass'] = StaticPool
        eng = create_engine(dsn, **kwargs)

        @event.listens_for(eng, 'connect')
        def _fk_on(dbapi_conn, _):
            cur = dbapi_conn.cursor()
            cur.execute('PRAGMA foreign_keys=ON')
            cur.close()
        return eng
    return create_engine(dsn, pool_pre_ping=True, isolation_level=settings.DB_ISOLATION_LEVEL)

engine = make_engine(settings.POSTGRES_DSN)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """All-or-nothing unit of work: commit on success, roll back and re-raise otherwise."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
