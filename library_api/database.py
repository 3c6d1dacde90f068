import json

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from library_api.config import settings


def _json_dumps(value) -> str:
    # Keep accented text readable so LIKE filters on JSON columns can match it
    return json.dumps(value, ensure_ascii=False)


def _make_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # Request handlers run in a thread pool
        connect_args["check_same_thread"] = False
    return create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        json_serializer=_json_dumps,
    )


# Users and loans
engine = _make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Books
catalog_engine = _make_engine(settings.catalog_database_url)
CatalogSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=catalog_engine)
CatalogBase = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_catalog():
    catalog = CatalogSessionLocal()
    try:
        yield catalog
    finally:
        catalog.close()


def init_db() -> None:
    # Register the tables on their metadata before creating them
    from library_api import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    CatalogBase.metadata.create_all(bind=catalog_engine)


def drop_db() -> None:
    from library_api import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    CatalogBase.metadata.drop_all(bind=catalog_engine)
