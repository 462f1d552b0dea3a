"""Pydantic models shared by the analysis pipeline, the store and the API.

Python attributes are snake_case; JSON output uses camelCase aliases
(``qualityScore``, ``analysisMethod``...) for the dashboard.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Severity = Literal["low", "medium", "high", "critical"]
SEVERITIES = ("low", "medium", "high", "critical")

AnalysisMethod = Literal["basic", "enhanced"]
TrendDirection = Literal["improving", "declining", "stable", "insufficient_data"]


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dictionary with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class CommitRecord(CamelModel):
    sha: str
    message: str = ""
    author: str = ""
    date: Optional[datetime] = None
    category: Optional[str] = None
    confidence: Optional[float] = None
    diff: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _date_from_author(cls, data):
        if isinstance(data, dict) and not data.get("date") and isinstance(data.get("author"), dict):
            author_date = data["author"].get("date")
            if author_date:
                data = {**data, "date": author_date}
        return data

    @field_validator("message", mode="before")
    @classmethod
    def _message_or_empty(cls, value):
        return "" if value is None else value

    @field_validator("author", mode="before")
    @classmethod
    def _author_name(cls, value):
        # GitHub-style author objects: {"name": ..., "email": ..., "date": ...}
        if isinstance(value, dict):
            return str(value.get("name") or "")
        return "" if value is None else value


class AnalysisRequest(CamelModel):
    commits: List[CommitRecord] = Field(default_factory=list)
    repository_id: str
    timeframe: str = "weekly"
    repository_full_name: Optional[str] = None
    model: Optional[str] = None
    force_refresh: bool = False


class Issue(CamelModel):
    type: str = "maintainability"
    severity: Severity = "medium"
    description: str = "Quality issue detected"
    suggestion: str = "Review and address this issue"
    commit_count: int = 1
    location: Optional[str] = None


class CodeIssue(CamelModel):
    type: str = "quality"
    severity: Severity = "medium"
    line: str = "unknown"
    description: str = "Code issue detected"
    suggestion: str = "Review and improve this code"
    example: str = ""


class CodeReview(CamelModel):
    """Validated review of one commit's diff."""

    severity: Severity = "medium"
    issues: List[CodeIssue] = Field(default_factory=list)
    positives: List[str] = Field(default_factory=list)
    overall_assessment: str = "Code analysis completed"
    recommended_actions: List[str] = Field(default_factory=list)


class CommitCodeInsight(CamelModel):
    commit_sha: str
    commit_message: str = ""
    lines_changed: int = 0
    analysis: CodeReview


class CodeAnalysisSummary(CamelModel):
    total_commits_analyzed: int = 0
    total_issues_found: int = 0
    critical_issues_found: int = 0
    overall_code_health: Literal["good", "fair", "concerning"] = "good"


class CodeAnalysis(CamelModel):
    commits_analyzed: int = 0
    total_lines_analyzed: int = 0
    insights: List[CommitCodeInsight] = Field(default_factory=list)
    summary: CodeAnalysisSummary = Field(default_factory=CodeAnalysisSummary)
    skipped_commits: List[str] = Field(default_factory=list)
    failed_commits: List[str] = Field(default_factory=list)


class MessageAnalysis(CamelModel):
    """Output of the message-level stage, from the AI or from heuristics."""

    quality_score: float = 0.6
    issues: List[Issue] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    method: Literal["ai", "heuristic"] = "ai"

    @field_validator("quality_score")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return clamp(value)


class MessageQuality(CamelModel):
    descriptive_percentage: int = 0
    conventional_percentage: int = 0
    vague_percentage: int = 0
    average_length: int = 0


class PatternCounts(CamelModel):
    quick_fixes: int = 0
    technical_debt: int = 0
    security_focus: int = 0
    testing_activity: int = 0
    documentation: int = 0
    refactoring: int = 0
    performance: int = 0
    health_score: float = 0.7


class CommitFrequency(CamelModel):
    """When and by whom commits were made; commits without a date are not counted."""

    by_hour: Dict[int, int] = Field(default_factory=dict)
    by_day: Dict[str, int] = Field(default_factory=dict)
    by_author: Dict[str, int] = Field(default_factory=dict)
    peak_hour: Optional[int] = None
    peak_hour_count: int = 0
    peak_day: Optional[str] = None
    peak_day_count: int = 0
    weekend_commits: int = 0
    late_night_commits: int = 0


class QualityMetrics(CamelModel):
    commit_distribution: Dict[str, int] = Field(default_factory=dict)
    message_quality: MessageQuality = Field(default_factory=MessageQuality)
    patterns: PatternCounts = Field(default_factory=PatternCounts)
    frequency: CommitFrequency = Field(default_factory=CommitFrequency)


class AnalysisMetadata(CamelModel):
    commits_analyzed: int = 0
    analysis_date: datetime
    method: Literal["ai", "heuristic", "fallback"] = "ai"
    timeframe: Optional[str] = None
    cache_key: Optional[str] = None
    model: Optional[str] = None


class QualityAnalysisResult(CamelModel):
    quality_score: float = 0.5
    issues: List[Issue] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    metrics: Optional[QualityMetrics] = None
    code_analysis: Optional[CodeAnalysis] = None
    analysis_method: AnalysisMethod = "basic"
    metadata: AnalysisMetadata

    @field_validator("quality_score")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return clamp(value)


class CacheRecord(CamelModel):
    cache_key: str
    repository_id: str
    analysis_date: str
    payload: QualityAnalysisResult
    created_at: datetime


class TrendPoint(CamelModel):
    date: str
    score: float
    issue_count: int = 0


class TrendReport(CamelModel):
    direction: TrendDirection
    score_change: float = 0.0
    average_score: float = 0.5
    current_score: Optional[float] = None
    historical_data: List[TrendPoint] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class RepositoryTrend(CamelModel):
    repository_id: str
    trend: Literal["improving", "declining", "stable", "no_data"]
    score: float = 0.0
    data_points: int = 0


class MultiRepoTrendReport(CamelModel):
    repositories: List[RepositoryTrend] = Field(default_factory=list)
    summary: Dict[str, int] = Field(default_factory=dict)
    generated_at: datetime


class QualityStats(CamelModel):
    total_analyses: int = 0
    recent_analyses: int = 0
    average_quality_score: float = 0.0
    repository_id: str = "all"
    generated_at: datetime
