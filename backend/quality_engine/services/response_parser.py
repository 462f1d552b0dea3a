"""Validation boundary for AI responses.

Everything the AI collaborator returns passes through here before it reaches
the pipeline. The parsers never raise: malformed, partial or missing payloads
come back as fully populated models with documented defaults.

Defaults
--------
Quality (message-level) response:
    qualityScore 0.5 when missing or not numeric, clamped to [0, 1];
    insights ["Code quality analysis completed"] and recommendations
    ["Continue monitoring code quality"] when missing or not a list.
    Unparseable input returns ``default_quality_analysis()``.

Code review (diff-level) response:
    severity "medium"; issues/positives/recommendedActions empty;
    overallAssessment "Code analysis completed".
    Unparseable input returns ``default_code_review()``.

Non-finite or overflowing numbers take the field default, and JSON nested too
deeply to decode counts as unparseable.
"""
import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

from quality_engine.schemas import SEVERITIES, CodeIssue, CodeReview, Issue, MessageAnalysis, clamp

logger = logging.getLogger(__name__)

DEFAULT_INSIGHTS = ["Code quality analysis completed"]
DEFAULT_RECOMMENDATIONS = ["Continue monitoring code quality"]

SEVERITY_SYNONYMS = {
    "severe": "critical",
    "blocker": "critical",
    "urgent": "critical",
    "major": "high",
    "important": "high",
    "moderate": "medium",
    "normal": "medium",
    "warning": "medium",
    "minor": "low",
    "trivial": "low",
    "info": "low",
    "informational": "low",
}

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def default_quality_analysis() -> MessageAnalysis:
    return MessageAnalysis(
        quality_score=0.6,
        issues=[
            Issue(
                type="analysis_error",
                severity="low",
                description="Unable to fully analyze quality patterns",
                suggestion="Manual code review recommended",
                commit_count=0,
            )
        ],
        insights=["Quality analysis completed with limited data"],
        recommendations=["Ensure commit messages are descriptive"],
        method="ai",
    )


def default_code_review() -> CodeReview:
    return CodeReview(
        severity="medium",
        issues=[
            CodeIssue(
                type="analysis_error",
                severity="low",
                line="unknown",
                description="Unable to fully analyze code changes",
                suggestion="Manual code review recommended",
            )
        ],
        positives=[],
        overall_assessment="Code analysis incomplete",
        recommended_actions=["Manual review recommended"],
    )


def load_json_payload(text: Any) -> Optional[Dict[str, Any]]:
    """Extract a JSON object from raw model output, or None."""
    if isinstance(text, (bytes, bytearray)):
        text = text.decode("utf-8", errors="replace")
    if not isinstance(text, str) or not text.strip():
        return None

    candidates = [text.strip()]
    fenced = _FENCE_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    embedded = _OBJECT_RE.search(text)
    if embedded:
        candidates.append(embedded.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, TypeError, ValueError, RecursionError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def parse_if_nested(value: Any) -> Any:
    """Re-parse one level of string-encoded JSON; keep the raw string on failure."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("[") or stripped.startswith("{"):
            try:
                return json.loads(stripped)
            except (json.JSONDecodeError, ValueError, RecursionError):
                logger.warning(f"Failed to parse nested JSON: {stripped[:100]}")
                return value
    return value


def coerce_list(value: Any) -> List[Any]:
    value = parse_if_nested(value)
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, str) and value.strip():
        return [value]
    return []


def coerce_string_list(value: Any) -> List[str]:
    items = []
    for item in coerce_list(value):
        if item is None:
            continue
        text = item if isinstance(item, str) else json.dumps(item) if isinstance(item, (dict, list)) else str(item)
        if text.strip():
            items.append(text)
    return items


def normalize_severity(value: Any) -> str:
    """Map any input onto low/medium/high/critical; unknown values become medium."""
    if not isinstance(value, str):
        return "medium"
    name = value.strip().lower()
    if name in SEVERITIES:
        return name
    return SEVERITY_SYNONYMS.get(name, "medium")


def clamp_score(value: Any, default: float = 0.5) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%")) / (100 if value.strip().endswith("%") else 1)
        except ValueError:
            return default
    if not isinstance(value, (int, float)):
        return default
    try:
        value = float(value)
    except OverflowError:
        return default
    if not math.isfinite(value):
        return default
    return clamp(value)


def coerce_count(value: Any, default: int = 1) -> int:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(number):
        return default
    return max(0, int(number))


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    text = str(value)
    return text if text.strip() else default


def _string_list_or_default(value: Any, default: List[str]) -> List[str]:
    value = parse_if_nested(value)
    if not isinstance(value, (list, tuple)):
        return list(default)
    return coerce_string_list(list(value))


def _validate_issue(raw: Any) -> Optional[Issue]:
    if isinstance(raw, str) and raw.strip():
        return Issue(description=raw)
    if not isinstance(raw, dict):
        return None
    return Issue(
        type=_text(raw.get("type"), "maintainability"),
        severity=normalize_severity(raw.get("severity")),
        description=_text(raw.get("description"), "Quality issue detected"),
        suggestion=_text(raw.get("suggestion"), "Review and address this issue"),
        commit_count=coerce_count(raw.get("commitCount", raw.get("commit_count"))),
    )


def _validate_code_issue(raw: Any) -> Optional[CodeIssue]:
    if isinstance(raw, str) and raw.strip():
        return CodeIssue(description=raw)
    if not isinstance(raw, dict):
        return None
    return CodeIssue(
        type=_text(raw.get("type"), "quality"),
        severity=normalize_severity(raw.get("severity")),
        line=_text(raw.get("line"), "unknown"),
        description=_text(raw.get("description"), "Code issue detected"),
        suggestion=_text(raw.get("suggestion"), "Review and improve this code"),
        example=_text(raw.get("example"), ""),
    )


def parse_quality_response(ai_response: Any) -> MessageAnalysis:
    """Parse the commit-message quality response from the AI."""
    payload = load_json_payload(ai_response)
    if payload is None:
        logger.error("Failed to parse quality response, using defaults")
        return default_quality_analysis()

    issues = [issue for issue in map(_validate_issue, coerce_list(payload.get("issues"))) if issue]
    return MessageAnalysis(
        quality_score=clamp_score(payload.get("qualityScore", payload.get("quality_score"))),
        issues=issues,
        insights=_string_list_or_default(payload.get("insights"), DEFAULT_INSIGHTS),
        recommendations=_string_list_or_default(payload.get("recommendations"), DEFAULT_RECOMMENDATIONS),
        method="ai",
    )


def parse_code_review_response(ai_response: Any) -> CodeReview:
    """Parse a per-commit code review response from the AI."""
    payload = load_json_payload(ai_response)
    if payload is None:
        logger.error("Failed to parse code analysis response, using defaults")
        return default_code_review()

    issues = [issue for issue in map(_validate_code_issue, coerce_list(payload.get("issues"))) if issue]
    return CodeReview(
        severity=normalize_severity(payload.get("severity")),
        issues=issues,
        positives=coerce_string_list(payload.get("positives")),
        overall_assessment=_text(payload.get("overallAssessment", payload.get("overall_assessment")), "Code analysis completed"),
        recommended_actions=coerce_string_list(payload.get("recommendedActions", payload.get("recommended_actions"))),
    )
