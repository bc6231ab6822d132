from sqlmodel import create_engine, SQLModel, Session
from sqlalchemy import event
from sqlalchemy.engine import Engine
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL
IS_SQLITE = DATABASE_URL.startswith("sqlite")


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # Local development / single-file deployments
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,  # Hosted Postgres drops idle connections
        pool_timeout=30,
        connect_args={"connect_timeout": 10},
    )


engine = _build_engine(DATABASE_URL)


@event.listens_for(engine, "connect")
def set_statement_timeout(dbapi_connection, connection_record):
    """Cap query time on PostgreSQL connections."""
    if IS_SQLITE:
        return
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("SET statement_timeout = '30s'")
    except Exception as e:
        logger.warning(f"Could not set statement timeout: {e}")
    finally:
        cursor.close()


def get_session():
    with Session(engine) as session:
        yield session


def create_db_and_tables():
    import app.models  # noqa: F401  (register tables on the metadata)

    SQLModel.metadata.create_all(engine)
