from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chatrelay.config import SERVER_CONFIG
from chatrelay.db.dbmodels import Base


def make_engine(database_url: str):
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases live per connection, so share a single one
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def create_session_factory(database_url: str):
    """Engine + sessionmaker for the given URL, with the tables created."""
    new_engine = make_engine(database_url)
    Base.metadata.create_all(bind=new_engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=new_engine)


engine = make_engine(SERVER_CONFIG["DATABASE_URL"])
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    Base.metadata.create_all(bind=engine)
