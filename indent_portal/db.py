from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from indent_portal.models import Base


class Database:
    """Engine plus session factory, built once per application."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        if url.startswith('sqlite'):
            kwargs: dict = {'connect_args': {'check_same_thread': False}}
            if url in {'sqlite://', 'sqlite:///:memory:'}:
                kwargs['poolclass'] = StaticPool
            self.engine = create_engine(url, echo=echo, **kwargs)
            event.listen(self.engine, 'connect', _enable_sqlite_foreign_keys)
        else:
            self.engine = create_engine(url, echo=echo, pool_pre_ping=True, pool_size=20, max_overflow=0)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text('SELECT 1'))
        return True

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request) -> Iterator[Session]:
    db = get_database(request).session()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
