import logging
from typing import Optional, Sequence

from quality_engine.schemas import CommitRecord, Issue, MessageAnalysis
from quality_engine.services.metrics import analyze_message_quality, detect_commit_patterns, fallback_quality_score, round_half_up
from quality_engine.services.prompts import PromptBuilder
from quality_engine.services.response_parser import parse_quality_response


class MessageAnalyzer:
    """Commit-message analysis: AI categorization with a heuristic fallback.

    Both paths return a ``MessageAnalysis`` of the same shape, so callers never
    branch on which one ran.
    """

    def __init__(self, ai_client=None, prompt_builder: Optional[PromptBuilder] = None, logger: Optional[logging.Logger] = None):
        self.ai_client = ai_client
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.logger = logger or logging.getLogger(__name__)

    async def analyze(self, commits: Sequence[CommitRecord]) -> MessageAnalysis:
        if not commits:
            return heuristic_message_analysis(commits)
        if self.ai_client is None:
            self.logger.info("No AI client configured, using heuristic commit message analysis")
            return heuristic_message_analysis(commits)

        self.logger.info(f"AI quality: analyzing commit message patterns for {len(commits)} commits")
        try:
            prompt = self.prompt_builder.quality_prompt(commits)
            response = await self.ai_client.invoke(prompt)
        except Exception as e:
            self.logger.error(f"AI commit message analysis failed: {str(e)}")
            return heuristic_message_analysis(commits)
        return parse_quality_response(response)


def heuristic_message_analysis(commits: Sequence[CommitRecord]) -> MessageAnalysis:
    """Pattern counts and message-format ratios, no AI involved."""
    total = len(commits)
    quality = analyze_message_quality(commits)
    patterns = detect_commit_patterns(commits)

    issues = []
    if patterns.technical_debt > 0:
        issues.append(Issue(
            type="technical_debt",
            severity="medium",
            description=f"Found {patterns.technical_debt} commits with technical debt indicators",
            suggestion="Review TODO and FIXME comments for prioritization",
            commit_count=patterns.technical_debt,
        ))
    if total and patterns.quick_fixes / total > 0.3:
        issues.append(Issue(
            type="process",
            severity="medium",
            description="High percentage of quick fixes and hotfixes",
            suggestion="Consider implementing better testing and review processes",
            commit_count=patterns.quick_fixes,
        ))
    if quality.vague_percentage > 50:
        issues.append(Issue(
            type="documentation",
            severity="low",
            description="Many commit messages are too vague or short",
            suggestion="Use more descriptive commit messages following conventional format",
            commit_count=round_half_up(total * quality.vague_percentage / 100),
        ))

    return MessageAnalysis(
        quality_score=fallback_quality_score(commits),
        issues=issues,
        insights=[
            f"Analyzed {total} commits",
            f"{quality.conventional_percentage}% use conventional format",
            f"{patterns.testing_activity} commits related to testing",
            f"Average message length: {quality.average_length} characters",
        ],
        recommendations=[
            "Consider using conventional commit format" if quality.conventional_percentage < 50 else "Good commit message format",
            "Consider adding more test coverage" if patterns.testing_activity == 0 else "Good testing activity",
            "Consider adding documentation updates" if patterns.documentation == 0 else "Good documentation activity",
            "Continue monitoring code quality metrics",
        ],
        method="heuristic",
    )

