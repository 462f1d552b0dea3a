import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from quality_engine.schemas import CacheRecord, QualityAnalysisResult, QualityStats
from quality_engine.db.models import QualityAnalysisRecord

logger = logging.getLogger(__name__)


class QualityStoreError(Exception):
    """Custom exception for persistence errors"""
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_record(row: QualityAnalysisRecord) -> CacheRecord:
    return CacheRecord(
        cache_key=row.cache_key,
        repository_id=row.repository_id,
        analysis_date=row.analysis_date,
        payload=QualityAnalysisResult.model_validate(row.payload),
        created_at=row.created_at,
    )


class SqlQualityStore:
    """Persistence for quality analyses, keyed by (repository, cache key)."""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def find_fresh(self, repository_id: str, cache_key: str, max_age: timedelta) -> Optional[CacheRecord]:
        """Return the record only if it was computed within ``max_age``."""
        cutoff = self.clock() - max_age
        db = self.session_factory()
        try:
            row = db.execute(
                select(QualityAnalysisRecord).where(
                    QualityAnalysisRecord.repository_id == repository_id,
                    QualityAnalysisRecord.cache_key == cache_key,
                    QualityAnalysisRecord.created_at >= cutoff,
                )
            ).scalars().first()
            if row is None:
                return None
            minutes_old = round((self.clock() - row.created_at).total_seconds() / 60)
            logger.info(f"Found cached quality analysis for {repository_id} ({minutes_old} minutes old)")
            return _to_record(row)
        except SQLAlchemyError as e:
            raise QualityStoreError(f"Failed to read cached analysis: {str(e)}") from e
        finally:
            db.close()

    def upsert(self, repository_id: str, analysis_date: str, cache_key: str, payload: QualityAnalysisResult) -> CacheRecord:
        now = self.clock()
        data = payload.model_dump(mode="json", by_alias=True)
        db = self.session_factory()
        try:
            row = db.execute(
                select(QualityAnalysisRecord).where(
                    QualityAnalysisRecord.repository_id == repository_id,
                    QualityAnalysisRecord.cache_key == cache_key,
                )
            ).scalars().first()
            if row is None:
                row = QualityAnalysisRecord(id=str(uuid.uuid4()), repository_id=repository_id, cache_key=cache_key)
                db.add(row)

            row.analysis_date = analysis_date
            row.quality_score = payload.quality_score
            row.analysis_method = payload.analysis_method
            row.commits_analyzed = payload.metadata.commits_analyzed
            row.payload = data
            row.created_at = now

            db.commit()
            logger.info(f"Stored quality analysis for {repository_id} under {cache_key}")
            return _to_record(row)
        except SQLAlchemyError as e:
            db.rollback()
            raise QualityStoreError(f"Failed to store quality analysis: {str(e)}") from e
        finally:
            db.close()

    def find_history(self, repository_id: str, since: date) -> List[CacheRecord]:
        """All analyses since ``since`` (inclusive), oldest first."""
        db = self.session_factory()
        try:
            rows = db.execute(
                select(QualityAnalysisRecord)
                .where(
                    QualityAnalysisRecord.repository_id == repository_id,
                    QualityAnalysisRecord.analysis_date >= since.isoformat(),
                )
                .order_by(QualityAnalysisRecord.analysis_date.asc(), QualityAnalysisRecord.created_at.asc())
            ).scalars().all()
            logger.info(f"Retrieved {len(rows)} historical quality entries for {repository_id}")
            return [_to_record(row) for row in rows]
        except SQLAlchemyError as e:
            raise QualityStoreError(f"Failed to read quality history: {str(e)}") from e
        finally:
            db.close()

    def find_similar(self, repository_id: str, commit_count: int, tolerance: int = 5, limit: int = 5) -> List[CacheRecord]:
        """Latest analyses whose commit count lies within ``tolerance`` of ``commit_count``, newest first."""
        db = self.session_factory()
        try:
            rows = db.execute(
                select(QualityAnalysisRecord)
                .where(
                    QualityAnalysisRecord.repository_id == repository_id,
                    QualityAnalysisRecord.commits_analyzed >= max(0, commit_count - tolerance),
                    QualityAnalysisRecord.commits_analyzed <= commit_count + tolerance,
                )
                .order_by(QualityAnalysisRecord.created_at.desc())
                .limit(limit)
            ).scalars().all()
            logger.info(f"Found {len(rows)} similar quality analyses for {repository_id}")
            return [_to_record(row) for row in rows]
        except SQLAlchemyError as e:
            raise QualityStoreError(f"Failed to find similar analyses: {str(e)}") from e
        finally:
            db.close()

    def delete_older_than(self, repository_id: Optional[str], cutoff: datetime) -> int:
        """Delete analyses computed before ``cutoff``; ``None`` means every repository."""
        cutoff = as_naive_utc(cutoff)
        db = self.session_factory()
        try:
            query = db.query(QualityAnalysisRecord).filter(QualityAnalysisRecord.created_at < cutoff)
            if repository_id is not None:
                query = query.filter(QualityAnalysisRecord.repository_id == repository_id)
            deleted = query.delete(synchronize_session=False)
            db.commit()
            logger.info(f"Cleared {deleted} quality analyses older than {cutoff.isoformat()} for {repository_id or 'all repositories'}")
            return deleted
        except SQLAlchemyError as e:
            db.rollback()
            raise QualityStoreError(f"Failed to delete old analyses: {str(e)}") from e
        finally:
            db.close()

    def stats(self, repository_id: Optional[str] = None) -> QualityStats:
        db = self.session_factory()
        try:
            base = db.query(QualityAnalysisRecord)
            if repository_id is not None:
                base = base.filter(QualityAnalysisRecord.repository_id == repository_id)

            total = base.count()
            recent = base.filter(QualityAnalysisRecord.created_at >= self.clock() - timedelta(days=7)).count()
            average = base.with_entities(func.avg(QualityAnalysisRecord.quality_score)).scalar()
            return QualityStats(
                total_analyses=total,
                recent_analyses=recent,
                average_quality_score=round(float(average or 0.0), 3),
                repository_id=repository_id or "all",
                generated_at=datetime.now(timezone.utc),
            )
        except SQLAlchemyError as e:
            raise QualityStoreError(f"Failed to compute quality stats: {str(e)}") from e
        finally:
            db.close()
