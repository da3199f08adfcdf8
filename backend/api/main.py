from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
import asyncio
import logging

from api.database import get_db, init_db, Listing, engine
from api.config import settings, configure_logging
from crawler import ListingRecord, compute_insights
from pydantic import BaseModel

configure_logging(settings)

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


async def cleanup_resources():
    """Clean up all resources on shutdown."""
    logger.info("Closing database connections...")
    try:
        await asyncio.wait_for(asyncio.to_thread(engine.dispose), timeout=2.0)
        logger.info("Database connections closed")
    except asyncio.TimeoutError:
        logger.warning("Database cleanup timed out")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info("Listing Crawler API Starting Up")
    logger.info("=" * 60)
    logger.info(f"Log file: {settings.log_file}")
    logger.info(f"Database: {settings.database_url}")
    init_db()
    logger.info("Database initialized successfully")

    yield  # Application runs here

    logger.info("Listing Crawler API Shutting Down")
    await cleanup_resources()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Listing Crawler API",
    version=API_VERSION,
    lifespan=lifespan
)

# Note: allow_credentials must be False when allow_origins is ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    """Return empty response for favicon requests"""
    return Response(status_code=204)


# Pydantic models for API responses
class ListingResponse(BaseModel):
    id: int
    platform: str
    title: str
    price: float
    location: str
    url: str
    rating: float
    description: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


def to_record(listing: Listing) -> ListingRecord:
    return ListingRecord(
        platform=listing.platform,
        title=listing.title,
        price=listing.price,
        location=listing.location,
        url=listing.url,
        rating=listing.rating,
        description=listing.description,
    )


# API Endpoints

@app.get("/")
async def root():
    return {"message": "Listing Crawler API", "version": API_VERSION}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/listings", response_model=List[ListingResponse])
async def get_listings(
    platform: Optional[str] = Query(None, description="Filter by platform (Airbnb)"),
    location: Optional[str] = Query(None, description="Substring match on location"),
    min_price: Optional[float] = Query(None, ge=0, description="Minimum price"),
    max_price: Optional[float] = Query(None, ge=0, description="Maximum price"),
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """Get listings with optional filters, most recently updated first"""
    query = db.query(Listing)

    if platform:
        query = query.filter(Listing.platform == platform)
    if location:
        query = query.filter(Listing.location.ilike(f"%{location}%"))
    if min_price is not None:
        query = query.filter(Listing.price >= min_price)
    if max_price is not None:
        query = query.filter(Listing.price <= max_price)

    query = query.order_by(Listing.updated_at.desc(), Listing.id.desc())
    return query.offset(offset).limit(limit).all()


@app.get("/api/listings/{listing_id}", response_model=ListingResponse)
async def get_listing(listing_id: int, db: Session = Depends(get_db)):
    """Get a single listing by ID"""
    listing = db.query(Listing).filter(Listing.id == listing_id).first()
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    return listing


@app.get("/api/stats")
async def get_stats(
    platform: Optional[str] = Query(None, description="Restrict to one platform"),
    db: Session = Depends(get_db)
):
    """Insights report over the stored listings"""
    query = db.query(Listing)
    if platform:
        query = query.filter(Listing.platform == platform)
    records = [to_record(listing) for listing in query.order_by(Listing.id).all()]
    return compute_insights(records).to_dict()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,  # Keep our logging configuration
        timeout_keep_alive=5,
        timeout_graceful_shutdown=5.0,
    )
