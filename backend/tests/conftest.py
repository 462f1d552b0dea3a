import json
from datetime import datetime, timedelta, timezone

import pytest

from quality_engine.config import QualityPolicy
from quality_engine.schemas import CacheRecord, CommitRecord, QualityStats
from quality_engine.services.quality_service import QualityAnalysisService

FIXED_NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

QUALITY_RESPONSE = json.dumps({
    "qualityScore": 0.5,
    "issues": [{"type": "testing", "severity": "medium", "description": "Few tests", "suggestion": "Add tests", "commitCount": 2}],
    "insights": ["Mostly feature work"],
    "recommendations": ["Write more tests"],
})

CLEAN_REVIEW_RESPONSE = json.dumps({
    "severity": "low",
    "issues": [],
    "positives": [],
    "overallAssessment": "Looks fine",
    "recommendedActions": [],
})


class FakeAIClient:
    """Routes quality and code review prompts to canned responses."""

    def __init__(self, quality_response=QUALITY_RESPONSE, review_response=CLEAN_REVIEW_RESPONSE,
                 fail_quality=False, fail_reviews_for=(), fail_all=False, model="gpt-4o-mini"):
        self.quality_response = quality_response
        self.review_response = review_response
        self.fail_quality = fail_quality
        self.fail_reviews_for = set(fail_reviews_for)
        self.fail_all = fail_all
        self.model = model
        self.prompts = []

    async def invoke(self, prompt):
        self.prompts.append(prompt)
        if self.fail_all:
            raise RuntimeError("AI unavailable")
        if "CODE CHANGES (GIT DIFF)" in prompt:
            if any(f"SHA: {sha[:8]}" in prompt for sha in self.fail_reviews_for):
                raise RuntimeError("review failed")
            return self.review_response
        if self.fail_quality:
            raise RuntimeError("quality call failed")
        return self.quality_response

    @property
    def review_calls(self):
        return [p for p in self.prompts if "CODE CHANGES (GIT DIFF)" in p]


class FakeDiffSource:
    def __init__(self, diffs=None, default="+added line\n-removed line"):
        self.diffs = diffs or {}
        self.default = default
        self.requested = []

    async def get_diff(self, repository_full_name, commit_sha):
        self.requested.append(commit_sha)
        return self.diffs.get(commit_sha, self.default)


class InMemoryStore:
    """Dict-backed store with the same surface as SqlQualityStore."""

    def __init__(self, clock=lambda: FIXED_NOW):
        self.records = {}
        self.clock = clock
        self.upserts = 0
        self.fail_reads = False
        self.fail_writes = False

    def find_fresh(self, repository_id, cache_key, max_age):
        if self.fail_reads:
            raise RuntimeError("store unavailable")
        record = self.records.get((repository_id, cache_key))
        if record is None or record.created_at < self.clock() - max_age:
            return None
        return record

    def upsert(self, repository_id, analysis_date, cache_key, payload):
        if self.fail_writes:
            raise RuntimeError("disk full")
        self.upserts += 1
        record = CacheRecord(
            cache_key=cache_key,
            repository_id=repository_id,
            analysis_date=analysis_date,
            payload=payload,
            created_at=self.clock(),
        )
        self.records[(repository_id, cache_key)] = record
        return record

    def find_history(self, repository_id, since):
        if self.fail_reads:
            raise RuntimeError("store unavailable")
        records = [
            r for (repo, _), r in self.records.items()
            if repo == repository_id and r.analysis_date >= since.isoformat()
        ]
        return sorted(records, key=lambda r: (r.analysis_date, r.created_at))

    def find_similar(self, repository_id, commit_count, tolerance=5, limit=5):
        if self.fail_reads:
            raise RuntimeError("store unavailable")
        records = [
            r for (repo, _), r in self.records.items()
            if repo == repository_id and abs(r.payload.metadata.commits_analyzed - commit_count) <= tolerance
        ]
        return sorted(records, key=lambda r: r.created_at, reverse=True)[:limit]

    def delete_older_than(self, repository_id, cutoff):
        doomed = [
            key for key, r in self.records.items()
            if r.created_at < cutoff and (repository_id is None or key[0] == repository_id)
        ]
        for key in doomed:
            del self.records[key]
        return len(doomed)

    def stats(self, repository_id=None):
        scores = [r.payload.quality_score for (repo, _), r in self.records.items()
                  if repository_id is None or repo == repository_id]
        return QualityStats(
            total_analyses=len(scores),
            recent_analyses=len(scores),
            average_quality_score=round(sum(scores) / len(scores), 3) if scores else 0.0,
            repository_id=repository_id or "all",
            generated_at=self.clock(),
        )


def make_commits(count, message="feat: add a descriptive change to the parser", diff=None):
    return [
        CommitRecord(
            sha=f"c{i:07d}" + "0" * 32,
            message=message,
            author="dev",
            date=FIXED_NOW - timedelta(hours=i),
            category="feature",
            diff=diff,
        )
        for i in range(count)
    ]


@pytest.fixture
def commits():
    return make_commits(5)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def ai_client():
    return FakeAIClient()


@pytest.fixture
def diff_source():
    return FakeDiffSource()


@pytest.fixture
def make_service(store):
    """Factory for a service wired to fakes and a fixed clock."""
    def factory(**overrides):
        options = {"store": store, "policy": QualityPolicy(), "clock": lambda: FIXED_NOW}
        options.update(overrides)
        return QualityAnalysisService(**options)
    return factory
