# database.py
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from config import DB_URL

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url=DB_URL, **kwargs):
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, **kwargs)
    if is_sqlite:
        # ON DELETE CASCADE / SET NULL are ignored by SQLite unless enabled per connection
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def make_session_factory(bind):
    return sessionmaker(bind=bind, expire_on_commit=False)


engine = make_engine()
SessionLocal = make_session_factory(engine)


def init_db(bind=None):
    import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
