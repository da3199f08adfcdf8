"""
Result sinks.

A sink persists a batch of ListingRecords keyed by URL. Saving the same
batch twice leaves the store in the same state as saving it once: rows are
upserted, mutable fields are overwritten and no duplicates appear.
"""

import asyncio
import csv
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

from sqlalchemy.exc import SQLAlchemyError

from .base import ListingRecord, SaveError

logger = logging.getLogger(__name__)

CSV_FIELDS = ['platform', 'title', 'price', 'location', 'url', 'rating', 'description']

# Fields overwritten when a URL is saved again
MUTABLE_FIELDS = ('platform', 'title', 'price', 'location', 'rating', 'description')

# Rows per INSERT statement (keeps SQLite under its bound-parameter limit)
UPSERT_CHUNK = 100


def unique_by_url(records: Iterable[ListingRecord]) -> List[ListingRecord]:
    """Collapse records sharing a URL; the last one wins, first position kept."""
    by_url: Dict[str, ListingRecord] = {}
    for record in records:
        by_url[record.url] = record
    return list(by_url.values())


class ResultSink(ABC):
    """Persists batches of records. Implementations raise on failure."""

    @abstractmethod
    async def save(self, records: Sequence[ListingRecord]) -> None:
        ...


class SQLAlchemySink(ResultSink):
    """
    Upserts records into the listings table.

    Uses INSERT ... ON CONFLICT (url) DO UPDATE on SQLite and PostgreSQL.
    Other dialects fall back to a select-then-update in the same session.
    The whole batch is committed in one transaction.
    """

    def __init__(self, session_factory):
        """
        Args:
            session_factory: sessionmaker bound to the target engine
        """
        self.session_factory = session_factory

    async def save(self, records: Sequence[ListingRecord]) -> None:
        if not records:
            return
        await asyncio.to_thread(self._save, records)

    def _save(self, records: Sequence[ListingRecord]):
        from api.database import Listing, utc_now

        batch = unique_by_url(records)
        now = utc_now()
        db = self.session_factory()
        try:
            dialect = db.get_bind().dialect.name
            if dialect in ('sqlite', 'postgresql'):
                self._upsert(db, dialect, Listing, batch, now)
            else:
                self._merge(db, Listing, batch, now)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise SaveError(f"failed to save {len(batch)} listings: {e}") from e
        finally:
            db.close()
        logger.info(f"storage: upserted {len(batch)} listings")

    def _upsert(self, db, dialect: str, model, batch: List[ListingRecord], now):
        if dialect == 'postgresql':
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert

        for start in range(0, len(batch), UPSERT_CHUNK):
            rows = [
                {**record.to_dict(), 'created_at': now, 'updated_at': now}
                for record in batch[start:start + UPSERT_CHUNK]
            ]
            stmt = insert(model.__table__).values(rows)
            update = {field: stmt.excluded[field] for field in MUTABLE_FIELDS}
            update['updated_at'] = stmt.excluded.updated_at
            db.execute(stmt.on_conflict_do_update(index_elements=['url'], set_=update))

    def _merge(self, db, model, batch: List[ListingRecord], now):
        for record in batch:
            existing = db.query(model).filter(model.url == record.url).first()
            if existing is None:
                db.add(model(**record.to_dict()))
                continue
            for field in MUTABLE_FIELDS:
                setattr(existing, field, getattr(record, field))
            existing.updated_at = now


class CsvSink(ResultSink):
    """
    Keeps a CSV file with one row per URL.

    Each save reads the existing file, merges the batch over it (last
    write wins) and rewrites the whole file.
    """

    def __init__(self, path):
        self.path = Path(path)

    async def save(self, records: Sequence[ListingRecord]) -> None:
        if not records:
            return
        await asyncio.to_thread(self._save, records)

    def _read_rows(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        with self.path.open(newline='', encoding='utf-8') as f:
            return {row['url']: row for row in csv.DictReader(f) if row.get('url')}

    def _save(self, records: Sequence[ListingRecord]):
        try:
            rows = self._read_rows()
            for record in records:
                rows[record.url] = record.to_dict()

            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
            with tmp_path.open('w', newline='', encoding='utf-8') as f:
                writer = csv.DictWriter(f, fieldnames=CSV_FIELDS, extrasaction='ignore')
                writer.writeheader()
                writer.writerows(rows.values())
            tmp_path.replace(self.path)
        except (OSError, csv.Error, KeyError) as e:
            raise SaveError(f"failed to write {self.path}: {e}") from e
        logger.info(f"storage: wrote {len(rows)} listings to {self.path}")


class MultiSink(ResultSink):
    """Saves each batch to several sinks in order."""

    def __init__(self, sinks: Sequence[ResultSink]):
        self.sinks = list(sinks)

    async def save(self, records: Sequence[ListingRecord]) -> None:
        for sink in self.sinks:
            await sink.save(records)
