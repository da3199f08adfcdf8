from sqlalchemy import create_engine, Column, Integer, String, Float, DateTime, Text, Index
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.engine import make_url
from datetime import datetime, timezone
from pathlib import Path


def utc_now():
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)

Base = declarative_base()


class Listing(Base):
    __tablename__ = 'listings'

    id = Column(Integer, primary_key=True)

    # Basic info
    platform = Column(String, nullable=False, index=True)  # Airbnb
    title = Column(String, nullable=False, default="")
    price = Column(Float, nullable=False, default=0.0)  # Nightly price, 0 when unknown
    location = Column(String, nullable=False, default="", index=True)
    url = Column(String, nullable=False, unique=True)  # Upsert key
    rating = Column(Float, nullable=False, default=0.0)
    description = Column(Text, nullable=False, default="")

    # Metadata
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_listings_platform_price', 'platform', 'price'),
        Index('ix_listings_updated_at', 'updated_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'platform': self.platform,
            'title': self.title,
            'price': self.price,
            'location': self.location,
            'url': self.url,
            'rating': self.rating,
            'description': self.description,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


# Database setup - import settings for database URL
from api.config import settings


def make_engine(database_url: str):
    """Build an engine; SQLite gets thread sharing, others a connection pool."""
    if make_url(database_url).get_backend_name() == "sqlite":
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        database_url,
        echo=False,
        pool_size=5,           # Number of connections to keep in pool
        max_overflow=10,       # Additional connections allowed beyond pool_size
        pool_pre_ping=True,    # Verify connections before use (handles stale connections)
        pool_recycle=3600,     # Recycle connections after 1 hour
    )


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def ensure_database_dir(bind):
    """Create the parent directory of a file-backed SQLite database."""
    url = bind.url
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

def init_db(bind=None):
    bind = bind or engine
    ensure_database_dir(bind)
    Base.metadata.create_all(bind=bind)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
