from storefront.config import DEFAULT_DATABASE_URL, Settings
from storefront.db import engine_for


def test_database_url_defaults_to_local_sqlite():
    settings = Settings(database_url="")
    assert settings.database_url == DEFAULT_DATABASE_URL
    assert settings.is_sqlite


def test_hosted_postgres_url_is_normalised():
    settings = Settings(database_url="postgres://shop:pw@db.internal:5432/shop")
    assert settings.database_url == "postgresql://shop:pw@db.internal:5432/shop"
    assert not settings.is_sqlite


def test_engine_built_from_settings():
    engine = engine_for(Settings(database_url="sqlite://"))
    assert engine.dialect.name == "sqlite"
    engine.dispose()
