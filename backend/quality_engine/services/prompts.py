from collections import defaultdict
from typing import Sequence

from langchain_core.prompts import PromptTemplate

from quality_engine.schemas import CommitRecord

QUALITY_TEMPLATE = PromptTemplate(
    input_variables=["commit_summary"],
    template="""You are a senior software engineer analyzing code quality patterns from git commits.

RECENT COMMITS BY CATEGORY:
{commit_summary}

ANALYSIS TASKS:
1. Identify code quality issues and technical debt patterns
2. Assess overall development practices
3. Provide actionable recommendations

LOOK FOR: technical debt indicators (TODO, FIXME, quick fix, temporary, hack), security-related
changes, performance work, testing activity or the lack of it, refactoring vs new features balance.

IMPORTANT: Respond with ONLY raw JSON, starting with {{ and ending with }}.

Return this exact JSON structure:
{{
  "qualityScore": 0.75,
  "issues": [
    {{
      "type": "technical_debt|security|performance|maintainability|testing",
      "severity": "low|medium|high|critical",
      "description": "What was observed",
      "suggestion": "What to do about it",
      "commitCount": 3
    }}
  ],
  "insights": ["Observation about the development practices"],
  "recommendations": ["Actionable recommendation"]
}}""",
)

CODE_REVIEW_TEMPLATE = PromptTemplate(
    input_variables=["commit_info", "diff"],
    template="""You are a senior software engineer performing a detailed code review of this commit.

COMMIT INFO:
{commit_info}

CODE CHANGES (GIT DIFF):
{diff}

Review for security issues, code quality issues, maintainability concerns, performance issues
and best practices (error handling, tests, naming, design).

IMPORTANT: Respond with ONLY raw JSON, starting with {{ and ending with }}.

Return this exact JSON structure:
{{
  "severity": "low|medium|high|critical",
  "issues": [
    {{
      "type": "security|performance|maintainability|quality",
      "severity": "low|medium|high|critical",
      "line": "approximate line number or 'multiple'",
      "description": "Specific issue found",
      "suggestion": "How to fix it",
      "example": "Better code if applicable"
    }}
  ],
  "positives": ["Good practices found in this commit"],
  "overallAssessment": "Brief summary of code quality",
  "recommendedActions": ["Specific actionable recommendations"]
}}

Focus on actionable, specific feedback. If the code looks good, say so!""",
)


def format_commits_by_category(commits: Sequence[CommitRecord]) -> str:
    grouped = defaultdict(list)
    for commit in commits:
        grouped[commit.category or "other"].append(commit)

    sections = []
    for category, items in grouped.items():
        lines = [f"{category.upper()} ({len(items)} commits):"]
        lines.extend(f"- {c.message.splitlines()[0] if c.message else '(no message)'}" for c in items)
        sections.append("\n".join(lines))
    return "\n\n".join(sections) if sections else "(no commits)"


def format_commit_info(commit: CommitRecord) -> str:
    lines = [f"SHA: {commit.sha[:8]}", f"Message: {commit.message}"]
    if commit.author:
        lines.append(f"Author: {commit.author}")
    if commit.date:
        lines.append(f"Date: {commit.date.isoformat()}")
    if commit.category:
        lines.append(f"Category: {commit.category}")
    return "\n".join(lines)


class PromptBuilder:
    """Renders the prompts sent to the AI collaborator."""

    def quality_prompt(self, commits: Sequence[CommitRecord]) -> str:
        return QUALITY_TEMPLATE.format(commit_summary=format_commits_by_category(commits))

    def code_review_prompt(self, commit: CommitRecord, diff: str) -> str:
        return CODE_REVIEW_TEMPLATE.format(commit_info=format_commit_info(commit), diff=diff)
