"""
Library database schema and connection management.

Uses SQLite with SQLAlchemy to record every bundle synced into the library.
"""

from datetime import datetime
from pathlib import Path
from sqlalchemy import create_engine, Column, Integer, String, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


class Bundle(Base):
    """An EPUB published to the library directory."""

    __tablename__ = "bundles"

    slug = Column(String, primary_key=True)  # slugified title
    file = Column(String, nullable=False)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False, default="Unknown Author")
    chapters = Column(Integer, nullable=False, default=0)
    size = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    def to_manifest_entry(self) -> dict:
        return {
            "slug": self.slug,
            "file": self.file,
            "title": self.title,
            "author": self.author,
            "chapters": self.chapters,
            "size": self.size,
        }


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    engine.dispose()


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    engine = create_engine(f"sqlite:///{db_path}")
    Session = sessionmaker(bind=engine)
    return Session()
