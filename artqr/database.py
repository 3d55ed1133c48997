from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from artqr.logging import get_logger
from artqr.models import Base, Setting

log = get_logger("database")

PRO_KEY = "is_pro"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str) -> Engine:
    """Engine for ``database_url``; SQLite connections enforce foreign keys."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    # Writers wait on the database lock instead of failing fast
    connect_args = {"check_same_thread": False, "timeout": 30}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        engine = create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
    else:
        engine = create_engine(database_url, connect_args=connect_args)
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def init_db(engine: Engine) -> sessionmaker:
    """Create tables, seed ``is_pro=false`` if absent, return a session factory."""
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with session_factory.begin() as session:
        if session.get(Setting, PRO_KEY) is None:
            session.add(Setting(key=PRO_KEY, value="false"))
    log.info("Database ready at %s", engine.url.render_as_string(hide_password=True))
    return session_factory
