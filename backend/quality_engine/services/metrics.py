"""Heuristic quality metrics over commit metadata and code reviews.

Every function here is pure: no I/O, no AI, no clock.
"""
import math
import re
from collections import Counter
from typing import Dict, List, Sequence

from quality_engine.schemas import (
    CodeAnalysis,
    CodeAnalysisSummary,
    CodeIssue,
    CodeReview,
    CommitCodeInsight,
    CommitFrequency,
    CommitRecord,
    Issue,
    MessageQuality,
    PatternCounts,
    QualityMetrics,
    clamp,
)

CONVENTIONAL_RE = re.compile(r"^(feat|fix|docs|style|refactor|test|chore)(\(.+\))?:")
STOP_PHRASE_RE = re.compile(r"^(fix|update|change|wip)$", re.IGNORECASE)

PATTERN_KEYWORDS: Dict[str, Sequence[str]] = {
    "quick_fixes": ("quick", "hotfix", "urgent"),
    "technical_debt": ("todo", "fixme", "hack", "temporary"),
    "security_focus": ("security", "auth", "encrypt", "validate"),
    "testing_activity": ("test", "spec", "coverage"),
    "documentation": ("doc", "readme", "comment"),
    "refactoring": ("refactor", "cleanup", "reorganize"),
    "performance": ("performance", "optimize", "speed"),
}

SEVERITY_PENALTIES = {"critical": 0.3, "high": 0.2, "medium": 0.1, "low": 0.05}
POSITIVE_BONUS = 0.05
NEUTRAL_CODE_SCORE = 0.6

POSITIVE_WORDS = ("improve", "enhance", "optimize", "add", "implement", "create", "upgrade", "better")
NEGATIVE_WORDS = ("fix", "bug", "error", "issue", "problem", "broken", "fail", "crash")
URGENT_WORDS = ("urgent", "critical", "hotfix", "emergency", "asap", "immediate")

EMOJI_RE = re.compile("[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF\U0001F1E0-\U0001F1FF]")

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def round_half_up(value: float) -> int:
    """Round halves up: 12.5 -> 13."""
    return math.floor(value + 0.5)


def _percent(count: int, total: int) -> int:
    return round_half_up(count / total * 100) if total else 0


def analyze_message_quality(commits: Sequence[CommitRecord]) -> MessageQuality:
    descriptive = conventional = vague = 0
    for commit in commits:
        message = commit.message or ""
        is_stop_phrase = bool(STOP_PHRASE_RE.match(message.strip()))
        if CONVENTIONAL_RE.match(message):
            conventional += 1
        if len(message) > 20 and not is_stop_phrase:
            descriptive += 1
        if len(message) < 15 or is_stop_phrase:
            vague += 1

    total = len(commits)
    average_length = round_half_up(sum(len(c.message or "") for c in commits) / total) if total else 0
    return MessageQuality(
        descriptive_percentage=_percent(descriptive, total),
        conventional_percentage=_percent(conventional, total),
        vague_percentage=_percent(vague, total),
        average_length=average_length,
    )


def pattern_health_score(counts: Dict[str, int], total_commits: int) -> float:
    score = 0.7
    if counts.get("testing_activity"):
        score += 0.1
    if counts.get("documentation"):
        score += 0.1
    if counts.get("security_focus"):
        score += 0.1
    if counts.get("refactoring"):
        score += 0.05
    if counts.get("performance"):
        score += 0.05

    if total_commits:
        if counts.get("quick_fixes", 0) / total_commits > 0.3:
            score -= 0.2
        if counts.get("technical_debt", 0) / total_commits > 0.2:
            score -= 0.1
    return clamp(score)


def detect_commit_patterns(commits: Sequence[CommitRecord]) -> PatternCounts:
    messages = [(c.message or "").lower() for c in commits]
    counts = {
        category: sum(1 for m in messages if any(keyword in m for keyword in keywords))
        for category, keywords in PATTERN_KEYWORDS.items()
    }
    return PatternCounts(**counts, health_score=pattern_health_score(counts, len(commits)))


def commit_distribution(commits: Sequence[CommitRecord]) -> Dict[str, int]:
    return dict(Counter(c.category or "other" for c in commits))


def fallback_quality_score(commits: Sequence[CommitRecord]) -> float:
    """Message-only score used when the AI is unavailable."""
    quality = analyze_message_quality(commits)
    patterns = detect_commit_patterns(commits)

    score = 0.6
    if quality.conventional_percentage > 50:
        score += 0.1
    if quality.descriptive_percentage > 70:
        score += 0.1
    if patterns.testing_activity > 0:
        score += 0.1
    if commits and patterns.quick_fixes / len(commits) > 0.3:
        score -= 0.2
    return clamp(score, 0.1, 1.0)


def analyze_commit_frequency(commits: Sequence[CommitRecord]) -> CommitFrequency:
    """Hour, weekday and author histograms over commits that carry a date.

    Hours are read in the timestamp's own offset. Late night is 22:00-06:59.
    Ties for the peak go to the earliest hour and the first weekday seen.
    """
    by_hour: Counter = Counter()
    by_day: Counter = Counter()
    by_author: Counter = Counter()
    for commit in commits:
        if commit.date is None:
            continue
        by_hour[commit.date.hour] += 1
        by_day[WEEKDAYS[commit.date.weekday()]] += 1
        by_author[commit.author or "Unknown"] += 1

    frequency = CommitFrequency(
        by_hour=dict(sorted(by_hour.items())),
        by_day=dict(by_day),
        by_author=dict(by_author),
        weekend_commits=by_day["Saturday"] + by_day["Sunday"],
        late_night_commits=sum(count for hour, count in by_hour.items() if hour >= 22 or hour <= 6),
    )
    if by_hour:
        frequency.peak_hour = min(by_hour, key=lambda hour: (-by_hour[hour], hour))
        frequency.peak_hour_count = by_hour[frequency.peak_hour]
    if by_day:
        frequency.peak_day, frequency.peak_day_count = by_day.most_common(1)[0]
    return frequency


def build_quality_metrics(commits: Sequence[CommitRecord]) -> QualityMetrics:
    return QualityMetrics(
        commit_distribution=commit_distribution(commits),
        message_quality=analyze_message_quality(commits),
        patterns=detect_commit_patterns(commits),
        frequency=analyze_commit_frequency(commits),
    )


# --- Diff-level scoring ---


def code_quality_score(insights: Sequence[CommitCodeInsight]) -> float:
    if not insights:
        return NEUTRAL_CODE_SCORE

    score = 0.8
    for insight in insights:
        for issue in insight.analysis.issues:
            score -= SEVERITY_PENALTIES.get(issue.severity, 0.0)
        score += len(insight.analysis.positives) * POSITIVE_BONUS
    return clamp(score, 0.1, 1.0)


def summarize_code_analysis(insights: Sequence[CommitCodeInsight]) -> CodeAnalysisSummary:
    total_issues = sum(len(i.analysis.issues) for i in insights)
    critical = sum(1 for i in insights for issue in i.analysis.issues if issue.severity == "critical")
    if critical == 0:
        health = "good"
    elif critical > 2:
        health = "concerning"
    else:
        health = "fair"
    return CodeAnalysisSummary(
        total_commits_analyzed=len(insights),
        total_issues_found=total_issues,
        critical_issues_found=critical,
        overall_code_health=health,
    )


def extract_code_issues(code_analysis: CodeAnalysis) -> List[Issue]:
    issues = []
    for insight in code_analysis.insights:
        for issue in insight.analysis.issues:
            issues.append(
                Issue(
                    type="code_quality",
                    severity=issue.severity,
                    description=f"Code: {issue.description}",
                    suggestion=issue.suggestion,
                    commit_count=1,
                    location=issue.line,
                )
            )
    return issues


def extract_code_insights(code_analysis: CodeAnalysis) -> List[str]:
    insights = []
    if code_analysis.commits_analyzed > 0:
        insights.append(
            f"Analyzed {code_analysis.commits_analyzed} commits with {code_analysis.total_lines_analyzed} lines of code"
        )
    for insight in code_analysis.insights:
        if insight.analysis.overall_assessment:
            insights.append(f"Code review: {insight.analysis.overall_assessment}")
    return insights


def extract_code_recommendations(code_analysis: CodeAnalysis) -> List[str]:
    recommendations = []
    for insight in code_analysis.insights:
        recommendations.extend(insight.analysis.recommended_actions)
    return recommendations


def combine_scores(message_score: float, code_score: float, message_weight: float = 0.4, code_weight: float = 0.6) -> float:
    return clamp(message_score * message_weight + code_score * code_weight)


# --- Message tone and anti-patterns ---


def analyze_commit_sentiment(commits: Sequence[CommitRecord]) -> Dict[str, object]:
    tally = Counter()
    for commit in commits:
        message = (commit.message or "").lower()
        if any(word in message for word in URGENT_WORDS):
            tally["urgent"] += 1
        elif any(word in message for word in NEGATIVE_WORDS):
            tally["negative"] += 1
        elif any(word in message for word in POSITIVE_WORDS):
            tally["positive"] += 1
        else:
            tally["neutral"] += 1

    total = len(commits)
    result: Dict[str, object] = {
        tone: {"count": tally[tone], "percentage": _percent(tally[tone], total)}
        for tone in ("positive", "negative", "urgent", "neutral")
    }
    if total and tally["urgent"] > total * 0.2:
        overall = "urgent"
    elif total and tally["negative"] > total * 0.5:
        overall = "negative"
    elif total and tally["positive"] > total * 0.4:
        overall = "positive"
    else:
        overall = "neutral"
    result["overallSentiment"] = overall
    return result


def _starts_lowercase(message: str) -> bool:
    message = message.strip()
    return bool(message) and message[0].islower()


ANTI_PATTERN_CHECKS = {
    "singleWord": lambda m: len(m.strip().split()) == 1,
    "allCaps": lambda m: len(m) > 3 and m == m.upper() and m != m.lower(),
    "noMessage": lambda m: not m.strip(),
    "tooLong": lambda m: len(m) > 100,
    "startsWithLowercase": _starts_lowercase,
    "endWithPeriod": lambda m: m.strip().endswith("."),
    "containsEmoji": lambda m: bool(EMOJI_RE.search(m)),
}


def detect_commit_anti_patterns(commits: Sequence[CommitRecord]) -> Dict[str, object]:
    total = len(commits)
    results = {}
    total_issues = 0
    for name, check in ANTI_PATTERN_CHECKS.items():
        matches = [c.message for c in commits if check(c.message or "")]
        total_issues += len(matches)
        results[name] = {
            "count": len(matches),
            "percentage": _percent(len(matches), total),
            "examples": [m for m in matches[:3] if m],
        }
    return {
        "antiPatterns": results,
        "totalIssues": total_issues,
        "healthScore": max(0.0, 1 - total_issues / total) if total else 1.0,
    }


def generate_message_recommendations(commits: Sequence[CommitRecord]) -> List[Dict[str, str]]:
    """Concrete, prioritized advice about commit message habits."""
    if not commits:
        return []

    quality = analyze_message_quality(commits)
    patterns = detect_commit_patterns(commits)
    anti_patterns = detect_commit_anti_patterns(commits)["antiPatterns"]
    sentiment = analyze_commit_sentiment(commits)
    recommendations = []

    if quality.conventional_percentage < 30:
        recommendations.append({
            "type": "format",
            "priority": "high",
            "title": "Adopt Conventional Commit Format",
            "description": f"Only {quality.conventional_percentage}% of commits follow conventional format",
            "action": "Use prefixes like feat:, fix:, docs:, etc.",
        })
    if quality.average_length < 20:
        recommendations.append({
            "type": "detail",
            "priority": "medium",
            "title": "Write More Descriptive Messages",
            "description": f"Average commit message length is only {quality.average_length} characters",
            "action": "Include what was changed and why",
        })
    if anti_patterns["singleWord"]["count"] > 0:
        recommendations.append({
            "type": "clarity",
            "priority": "medium",
            "title": "Avoid Single-Word Commit Messages",
            "description": f"{anti_patterns['singleWord']['count']} commits use only one word",
            "action": "Describe what was actually changed",
        })
    if sentiment["urgent"]["percentage"] > 20:
        recommendations.append({
            "type": "process",
            "priority": "high",
            "title": "Reduce Urgent/Emergency Commits",
            "description": f"{sentiment['urgent']['percentage']}% of commits indicate urgency",
            "action": "Implement better testing and planning processes",
        })
    if patterns.technical_debt > len(commits) * 0.15:
        recommendations.append({
            "type": "maintenance",
            "priority": "medium",
            "title": "Address Technical Debt",
            "description": f"{patterns.technical_debt} commits mention TODO/FIXME items",
            "action": "Create tickets for TODOs and prioritize technical debt",
        })
    return recommendations


def heuristic_code_review(diff: str) -> CodeReview:
    """Line counts and marker checks for a diff, for callers without an AI client."""
    lines = diff.split("\n")
    added = sum(1 for line in lines if line.startswith("+") and not line.startswith("+++"))
    removed = sum(1 for line in lines if line.startswith("-") and not line.startswith("---"))

    issues = []
    if any(marker in diff for marker in ("console.log", "print(", "debugger")):
        issues.append(CodeIssue(
            type="quality",
            severity="low",
            line="multiple",
            description="Debug output statements detected",
            suggestion="Remove debug statements before production",
        ))
    if "TODO" in diff or "FIXME" in diff:
        issues.append(CodeIssue(
            type="maintainability",
            severity="medium",
            line="multiple",
            description="TODO/FIXME comments added",
            suggestion="Address TODO items or create tickets for them",
        ))

    return CodeReview(
        severity="medium" if issues else "low",
        issues=issues,
        positives=["Code additions detected"] if added > removed else [],
        overall_assessment=f"{added} lines added, {removed} lines removed",
        recommended_actions=["Address identified issues"] if issues else ["Code looks clean"],
    )
