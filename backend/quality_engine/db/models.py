from sqlalchemy import Column, DateTime, Float, Index, Integer, JSON, String, UniqueConstraint, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class QualityAnalysisRecord(Base):
    """SQLAlchemy model for cached quality analyses and their history."""
    __tablename__ = "quality_analyses"
    __table_args__ = (
        UniqueConstraint("repository_id", "cache_key", name="uq_quality_analyses_repo_key"),
        Index("ix_quality_analyses_repo_date", "repository_id", "analysis_date"),
        Index("ix_quality_analyses_created_at", "created_at"),
    )

    # Primary key and record identification
    id = Column(String(36), primary_key=True, comment="Unique identifier for the analysis record")
    repository_id = Column(String(255), nullable=False, comment="Repository identifier")
    cache_key = Column(String(512), nullable=False, comment="Bucketed cache key for the analysis")
    analysis_date = Column(String(10), nullable=False, comment="Day bucket (YYYY-MM-DD)")

    # Denormalized for history and stats queries
    quality_score = Column(Float, nullable=False, comment="Clamped quality score in [0, 1]")
    analysis_method = Column(String(20), nullable=False, default="basic", comment="basic or enhanced")
    commits_analyzed = Column(Integer, nullable=False, default=0, comment="Number of commits analyzed")

    # Analysis data
    payload = Column(JSON, nullable=False, comment="Complete analysis result in JSON format")

    # Record management; created_at is reset whenever the analysis is recomputed
    created_at = Column(DateTime, nullable=False, comment="Timestamp of the latest computation")
    updated_at = Column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        comment="Last update timestamp"
    )

    def __repr__(self):
        """String representation of the record."""
        return f"<QualityAnalysisRecord(id={self.id}, repository={self.repository_id}, key={self.cache_key})>"

    def to_dict(self):
        """Convert record to dictionary format."""
        return {
            "id": self.id,
            "repositoryId": self.repository_id,
            "cacheKey": self.cache_key,
            "analysisDate": self.analysis_date,
            "qualityScore": self.quality_score,
            "analysisMethod": self.analysis_method,
            "commitsAnalyzed": self.commits_analyzed,
            "payload": self.payload,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
