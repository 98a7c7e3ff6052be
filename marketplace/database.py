"""
Database setup

Only the local payment incident log lives here; bookings and documents are
owned by the marketplace API.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from marketplace.config import settings

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db():
    """Create tables"""
    # Import models so they register on Base.metadata
    from marketplace.models import incident  # noqa: F401

    Base.metadata.create_all(bind=engine)
