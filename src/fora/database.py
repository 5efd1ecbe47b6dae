from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from fora.config import settings
from fora.models import Base

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False}
    if settings.database_url.startswith("sqlite")
    else {},
)
SessionLocal = sessionmaker(bind=engine, class_=Session)


def init_db() -> None:
    """Create all tables."""
    Base.metadata.create_all(engine)
