from sqlmodel import create_engine, SQLModel, Session
from sqlalchemy import event
from sqlalchemy.engine import Engine
import os
from dotenv import load_dotenv

from app.core.config import settings
from app.core.logging_config import get_logger

load_dotenv()

logger = get_logger(__name__)


def build_database_url() -> str:
    if settings.DATABASE_URL:
        return settings.DATABASE_URL

    # Fallback construction from the usual libpq variables
    host = os.getenv("PGHOST", "localhost")
    db = os.getenv("PGDATABASE", "billing")
    user = os.getenv("PGUSER", "postgres")
    password = os.getenv("PGPASSWORD", "")
    ssl_mode = os.getenv("PGSSLMODE", "prefer")

    return f"postgresql://{user}:{password}@{host}/{db}?sslmode={ssl_mode}"


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,  # Recycle connections every 5 min
        pool_timeout=30,
        connect_args={
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        },
    )

    @event.listens_for(engine, "connect")
    def set_statement_timeout(dbapi_connection, connection_record):
        """Cap query time so a stuck sweep cannot hold a connection forever."""
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("SET statement_timeout = '30s'")
        except Exception as e:
            logger.warning("Could not set statement timeout", error=str(e))
        finally:
            cursor.close()

    return engine


DATABASE_URL = build_database_url()
engine = build_engine(DATABASE_URL)


def get_session():
    with Session(engine) as session:
        yield session


def create_db_and_tables():
    # Import models so their tables are registered on the metadata
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
