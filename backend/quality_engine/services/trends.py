from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence

from quality_engine.schemas import MultiRepoTrendReport, RepositoryTrend, TrendPoint, TrendReport
from quality_engine.services.metrics import round_half_up

RECENT_WINDOW = 7
CHANGE_THRESHOLD = 0.05
MULTI_REPO_WINDOW = 3


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _direction(change: float, threshold: float) -> str:
    if change > threshold:
        return "improving"
    if change < -threshold:
        return "declining"
    return "stable"


def calculate_quality_trends(
    scores: Sequence[float],
    window: int = RECENT_WINDOW,
    threshold: float = CHANGE_THRESHOLD,
    history: Optional[List[TrendPoint]] = None,
) -> TrendReport:
    """Summarize a chronological score series (oldest first) into a trend.

    The last ``window`` points are compared against everything before them;
    at least one point always counts as "older".
    """
    history = history or []
    current = round(scores[-1], 3) if scores else None

    if len(scores) < 2:
        return TrendReport(
            direction="insufficient_data",
            score_change=0.0,
            average_score=round(scores[0], 3) if scores else 0.5,
            current_score=current,
            historical_data=history,
            insights=["Need more data points to determine trends"],
            recommendations=["Continue daily quality monitoring"],
        )

    split = max(1, len(scores) - window)
    recent = scores[split:]
    older = scores[:split]
    recent_avg = _mean(recent)
    change = recent_avg - _mean(older)
    direction = _direction(change, threshold)

    if change > 0:
        change_note = "Quality improvements detected"
    elif change < 0:
        change_note = "Quality concerns detected"
    else:
        change_note = "Quality remains stable"

    if direction == "declining":
        recommendations = [
            "Review recent commits for quality issues",
            "Consider implementing code review practices",
            "Focus on addressing technical debt",
        ]
    else:
        recommendations = [
            "Continue current development practices",
            "Monitor for any quality regressions",
            "Consider sharing best practices with team",
        ]

    return TrendReport(
        direction=direction,
        score_change=round(change, 3),
        average_score=round(recent_avg, 3),
        current_score=current,
        historical_data=history,
        insights=[
            f"Quality trend is {direction}",
            f"Average score: {round_half_up(recent_avg * 100)}%",
            change_note,
        ],
        recommendations=recommendations,
    )


def repository_trend(repository_id: str, scores: Sequence[float], window: int = MULTI_REPO_WINDOW) -> RepositoryTrend:
    if not scores:
        return RepositoryTrend(repository_id=repository_id, trend="no_data", score=0.0, data_points=0)

    trend = "stable"
    if len(scores) > window:
        change = _mean(scores[-window:]) - _mean(scores[:-window])
        trend = _direction(change, CHANGE_THRESHOLD)

    return RepositoryTrend(
        repository_id=repository_id,
        trend=trend,
        score=round(_mean(scores), 3),
        data_points=len(scores),
    )


def summarize_repository_trends(histories: Mapping[str, Sequence[float]]) -> MultiRepoTrendReport:
    """Compare several repositories side by side over a short window."""
    trends = [repository_trend(repo_id, scores) for repo_id, scores in histories.items()]
    summary: Dict[str, int] = {
        "total": len(trends),
        "improving": sum(1 for t in trends if t.trend == "improving"),
        "declining": sum(1 for t in trends if t.trend == "declining"),
        "stable": sum(1 for t in trends if t.trend == "stable"),
        "noData": sum(1 for t in trends if t.trend == "no_data"),
    }
    return MultiRepoTrendReport(
        repositories=trends,
        summary=summary,
        generated_at=datetime.now(timezone.utc),
    )
