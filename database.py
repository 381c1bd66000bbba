from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.schema import CreateTable

from config import get_settings

settings = get_settings()


def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    options = {"connect_args": {"check_same_thread": False}}
    # In-memory databases live on a single connection
    if url in ("sqlite://", "sqlite:///:memory:"):
        options["poolclass"] = StaticPool
    return options


engine = create_engine(settings.database_url, echo=settings.sql_echo, **_engine_options(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def render_schema_sql() -> str:
    """Render PostgreSQL DDL for every mapped table, in dependency order.

    Nothing is executed; the text is meant to be run by hand in the
    database's SQL editor.
    """
    import models  # noqa: F401  (registers the tables on Base.metadata)

    dialect = postgresql.dialect()
    statements = [
        str(CreateTable(table, if_not_exists=True).compile(dialect=dialect)).strip() + ";"
        for table in Base.metadata.sorted_tables
    ]
    return "\n\n".join(statements) + "\n"
