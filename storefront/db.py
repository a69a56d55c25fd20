# storefront/db.py
from sqlmodel import SQLModel, create_engine, Session

from .config import Settings, get_settings


def engine_for(settings: Settings):
    # request threads share the pool, sqlite has to allow that
    connect_args = {"check_same_thread": False} if settings.is_sqlite else {}
    return create_engine(settings.database_url, echo=False, connect_args=connect_args)


engine = engine_for(get_settings())


def init_db(bind=None):
    # creates missing tables only, existing data is left alone
    from . import models  # noqa: F401  registers the tables on the metadata

    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session
