from sqlmodel import SQLModel, create_engine, Session
from typing import Generator
from dotenv import load_dotenv
import logging

from core.config import settings

# ============================================================
# ✅ Load environment variables
# ============================================================
load_dotenv()
logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

# ============================================================
# ✅ Create SQLModel engine
# ============================================================
# SQLite connections are shared across the threadpool FastAPI runs sync routes on
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    connect_args=connect_args,
)


# ============================================================
# ✅ Create tables (called at startup)
# ============================================================
def create_db_and_tables() -> None:
    """
    Create all database tables based on SQLModel models.
    This runs automatically at app startup.
    """
    # Registers the table metadata before create_all
    import models.models  # noqa: F401

    try:
        SQLModel.metadata.create_all(engine)
        logger.info("All database tables created successfully.")
    except Exception as e:
        logger.error("Failed to create tables: %s", e)
        raise


# ============================================================
# ✅ Dependency: FastAPI session generator
# ============================================================
def get_session() -> Generator[Session, None, None]:
    """
    Provides a SQLModel Session to FastAPI dependencies.
    Closes automatically after request completes.
    """
    with Session(engine) as session:
        yield session
