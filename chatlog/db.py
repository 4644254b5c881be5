from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

# imported for table registration on SQLModel.metadata
from chatlog import models  # noqa: F401

UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def make_engine(database_url: str):
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def upsert_insert(pg_engine):
    # insert() that supports on_conflict_do_update / on_conflict_do_nothing
    insert = UPSERT_DIALECTS.get(pg_engine.dialect.name)
    if insert is None:
        raise ValueError(f"Unsupported database dialect: {pg_engine.dialect.name}")
    return insert


def init_db(pg_engine):
    # create all tables
    SQLModel.metadata.create_all(pg_engine)
