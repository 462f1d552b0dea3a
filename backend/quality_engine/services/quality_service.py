"""Quality analysis orchestration.

One call to ``QualityAnalysisService.analyze`` walks these stages:

    cache check -> strategy select -> message analysis
        -> [diff selection -> per-commit diff reviews]   (enhanced only)
        -> combine -> score -> persist

Any unexpected failure lands in a neutral fallback result instead of an
exception. Task cancellation is not a failure: it propagates and nothing is
persisted.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

from quality_engine.config import QualityPolicy
from quality_engine.schemas import (
    AnalysisMetadata,
    AnalysisRequest,
    CacheRecord,
    CodeAnalysis,
    CommitCodeInsight,
    CommitRecord,
    Issue,
    MessageAnalysis,
    MultiRepoTrendReport,
    QualityAnalysisResult,
    QualityStats,
    TrendPoint,
    TrendReport,
    clamp,
)
from quality_engine.services.cache_keys import generate_cache_key
from quality_engine.services.diff_limits import truncate_diff
from quality_engine.services.message_analyzer import MessageAnalyzer
from quality_engine.services.metrics import (
    build_quality_metrics,
    code_quality_score,
    combine_scores,
    extract_code_insights,
    extract_code_issues,
    extract_code_recommendations,
    heuristic_code_review,
    summarize_code_analysis,
)
from quality_engine.services.prompts import PromptBuilder
from quality_engine.services.response_parser import parse_code_review_response
from quality_engine.services.trends import calculate_quality_trends, summarize_repository_trends

DiffSelector = Callable[[Sequence[CommitRecord]], Sequence[CommitRecord]]

NEUTRAL_SCORE = 0.5
SIMILAR_COMMIT_TOLERANCE = 5


def select_all_commits(commits: Sequence[CommitRecord]) -> List[CommitRecord]:
    """Default diff selection: every commit gets a code review."""
    return list(commits)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QualityAnalysisService:
    """Stateless orchestrator over the AI, diff and store collaborators.

    Collaborators are duck-typed:

    - ``ai_client.invoke(prompt) -> str`` (async)
    - ``diff_source.get_diff(repository_full_name, sha) -> str | None`` (async)
    - ``store.find_fresh / upsert / find_history / find_similar / delete_older_than / stats``
      (synchronous; the pipeline calls it from a worker thread)
    """

    def __init__(
        self,
        store=None,
        ai_client=None,
        diff_source=None,
        policy: Optional[QualityPolicy] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        diff_selector: DiffSelector = select_all_commits,
        clock: Callable[[], datetime] = _utc_now,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.ai_client = ai_client
        self.diff_source = diff_source
        self.policy = policy or QualityPolicy()
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.diff_selector = diff_selector
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.message_analyzer = MessageAnalyzer(ai_client, self.prompt_builder, self.logger)

    # --- Exposed operations ---

    def generate_cache_key(self, commits: Sequence[CommitRecord], repository_id: str, timeframe: str) -> str:
        return generate_cache_key(
            commits,
            repository_id,
            timeframe,
            today=self.clock().date(),
            bucket_size=self.policy.commit_bucket_size,
        )

    async def analyze_quality(
        self,
        commits: Sequence[CommitRecord],
        repository_id: str,
        timeframe: str = "weekly",
        repository_full_name: Optional[str] = None,
        *,
        force_refresh: bool = False,
        model: Optional[str] = None,
    ) -> QualityAnalysisResult:
        request = AnalysisRequest(
            commits=list(commits),
            repository_id=repository_id,
            timeframe=timeframe,
            repository_full_name=repository_full_name,
            force_refresh=force_refresh,
            model=model,
        )
        return await self.analyze(request)

    async def analyze(self, request: AnalysisRequest) -> QualityAnalysisResult:
        """Run the full analysis for one request. Never raises (except on cancellation)."""
        started = self.clock()
        model = request.model or getattr(self.ai_client, "model", None) or self.policy.default_model
        self.logger.info(f"Quality analysis for {request.repository_id}: {len(request.commits)} commits")

        try:
            run = self._run(request, model, started)
            if self.policy.analysis_timeout_seconds:
                return await asyncio.wait_for(run, timeout=self.policy.analysis_timeout_seconds)
            return await run
        except asyncio.TimeoutError:
            self.logger.error(f"Quality analysis for {request.repository_id} timed out after {self.policy.analysis_timeout_seconds}s")
            return self._fallback_result(request, model, started, "Quality analysis timed out")
        except Exception as e:
            self.logger.exception(f"Quality analysis failed for {request.repository_id}: {str(e)}")
            return self._fallback_result(request, model, started, f"Quality analysis failed: {str(e)}")

    def get_quality_trends(self, repository_id: str, days: int = 30) -> TrendReport:
        """Trend over the persisted history of the last ``days`` days. Never raises."""
        self.logger.info(f"Analyzing quality trends for {repository_id} over the last {days} days")
        try:
            history = self._history(repository_id, days)
        except Exception as e:
            self.logger.error(f"Quality trends analysis failed for {repository_id}: {str(e)}")
            return TrendReport(
                direction="insufficient_data",
                insights=["Unable to analyze quality trends"],
                recommendations=["Check your commit history and try again"],
            )

        if not history:
            return TrendReport(
                direction="insufficient_data",
                average_score=NEUTRAL_SCORE,
                insights=["Need more historical data to analyze trends"],
                recommendations=["Run quality analysis for a few more days to see trends"],
            )

        points = [
            TrendPoint(date=record.analysis_date, score=record.payload.quality_score, issue_count=len(record.payload.issues))
            for record in history
        ]
        return calculate_quality_trends(
            [point.score for point in points],
            window=self.policy.trend_window,
            threshold=self.policy.trend_threshold,
            history=points,
        )

    def get_multi_repo_trends(self, repository_ids: Sequence[str], days: int = 30) -> MultiRepoTrendReport:
        histories: Dict[str, List[float]] = {}
        for repository_id in repository_ids:
            try:
                histories[repository_id] = [r.payload.quality_score for r in self._history(repository_id, days)]
            except Exception as e:
                self.logger.error(f"Failed to load quality history for {repository_id}: {str(e)}")
                histories[repository_id] = []
        return summarize_repository_trends(histories)

    def find_similar_analyses(self, repository_id: str, commit_count: int, limit: int = 5) -> List[CacheRecord]:
        """Recent analyses of ``repository_id`` over a comparable number of commits. Never raises."""
        if self.store is None:
            return []
        try:
            return self.store.find_similar(repository_id, commit_count, tolerance=SIMILAR_COMMIT_TOLERANCE, limit=limit)
        except Exception as e:
            self.logger.error(f"Failed to find similar analyses for {repository_id}: {str(e)}")
            return []

    def clear_cache(self, repository_id: str, older_than_hours: float = 24) -> int:
        """Prune one repository's analyses older than ``older_than_hours``."""
        cutoff = self.clock() - timedelta(hours=older_than_hours)
        return self._require_store().delete_older_than(repository_id, cutoff)

    def cleanup_old_data(self, days: int = 90) -> int:
        """Prune analyses of every repository older than ``days``."""
        cutoff = self.clock() - timedelta(days=days)
        return self._require_store().delete_older_than(None, cutoff)

    def get_stats(self, repository_id: Optional[str] = None) -> QualityStats:
        return self._require_store().stats(repository_id)

    # --- Stages ---

    async def _run(self, request: AnalysisRequest, model: str, started: datetime) -> QualityAnalysisResult:
        commits = request.commits
        cache_key = generate_cache_key(
            commits,
            request.repository_id,
            request.timeframe,
            today=started.date(),
            bucket_size=self.policy.commit_bucket_size,
        )

        if request.force_refresh:
            self.logger.info(f"Force refresh requested for {request.repository_id}, skipping cache")
        else:
            cached = await self._find_cached(request.repository_id, cache_key)
            if cached is not None:
                return cached
            self.logger.info(f"No recent cache found for {request.repository_id}, running fresh analysis")

        strategy = self.select_strategy(request)
        self.logger.info(f"Running {strategy} analysis for {request.repository_id}")

        message_analysis = await self.message_analyzer.analyze(commits)

        code_analysis = None
        if strategy == "enhanced":
            try:
                selected = list(self.diff_selector(commits))
                self.logger.info(f"Selected {len(selected)} of {len(commits)} commits for code analysis")
                code_analysis = await self._analyze_code_changes(selected, request.repository_full_name, model)
            except Exception as e:
                self.logger.error(f"Code analysis failed, keeping message analysis only: {str(e)}")

        result = self._score(request, message_analysis, code_analysis, cache_key, model, started)
        await self._persist(request.repository_id, started, cache_key, result)
        return result

    def select_strategy(self, request: AnalysisRequest) -> str:
        if request.repository_full_name and self.diff_source is not None:
            return "enhanced"
        return "basic"

    async def _find_cached(self, repository_id: str, cache_key: str) -> Optional[QualityAnalysisResult]:
        if self.store is None:
            return None
        try:
            record = await asyncio.to_thread(
                self.store.find_fresh, repository_id, cache_key, timedelta(hours=self.policy.cache_ttl_hours)
            )
        except Exception as e:
            self.logger.warning(f"Cache lookup failed for {repository_id}, treating as miss: {str(e)}")
            return None
        if record is None:
            return None
        self.logger.info(f"Using cached quality analysis for {repository_id} ({cache_key})")
        return record.payload

    async def _analyze_code_changes(
        self,
        commits: Sequence[CommitRecord],
        repository_full_name: str,
        model: str,
    ) -> CodeAnalysis:
        semaphore = asyncio.Semaphore(self.policy.max_concurrent_diffs)
        outcomes = await asyncio.gather(
            *(self._review_commit(commit, repository_full_name, model, semaphore) for commit in commits),
            return_exceptions=True,
        )

        insights: List[CommitCodeInsight] = []
        skipped: List[str] = []
        failed: List[str] = []
        # zip keeps selection order regardless of completion order
        for commit, outcome in zip(commits, outcomes):
            if isinstance(outcome, BaseException):
                self.logger.error(f"Code analysis failed for {commit.sha[:8]}: {str(outcome)}")
                failed.append(commit.sha)
            elif outcome is None:
                skipped.append(commit.sha)
            else:
                insights.append(outcome)

        if failed:
            self.logger.warning(f"{len(failed)} of {len(commits)} commit reviews failed and were skipped")

        return CodeAnalysis(
            commits_analyzed=len(commits),
            total_lines_analyzed=sum(insight.lines_changed for insight in insights),
            insights=insights,
            summary=summarize_code_analysis(insights),
            skipped_commits=skipped,
            failed_commits=failed,
        )

    async def _review_commit(
        self,
        commit: CommitRecord,
        repository_full_name: str,
        model: str,
        semaphore: asyncio.Semaphore,
    ) -> Optional[CommitCodeInsight]:
        async with semaphore:
            diff = commit.diff
            if not diff:
                diff = await self.diff_source.get_diff(repository_full_name, commit.sha)
            if not diff or not diff.strip():
                self.logger.info(f"Skipping code analysis for {commit.sha[:8]} - no diff available")
                return None

            line_count = len(diff.split("\n"))
            diff = truncate_diff(diff, model)

            if self.ai_client is None:
                review = heuristic_code_review(diff)
            else:
                self.logger.info(f"AI code review for {commit.sha[:8]} ({line_count} lines)")
                prompt = self.prompt_builder.code_review_prompt(commit, diff)
                review = parse_code_review_response(await self.ai_client.invoke(prompt))

            return CommitCodeInsight(
                commit_sha=commit.sha,
                commit_message=commit.message,
                lines_changed=line_count,
                analysis=review,
            )

    def _score(
        self,
        request: AnalysisRequest,
        message_analysis: MessageAnalysis,
        code_analysis: Optional[CodeAnalysis],
        cache_key: str,
        model: str,
        started: datetime,
    ) -> QualityAnalysisResult:
        score = message_analysis.quality_score
        issues = list(message_analysis.issues)
        insights = list(message_analysis.insights)
        recommendations = list(message_analysis.recommendations)
        method = "basic"

        if code_analysis is not None and code_analysis.insights:
            score = combine_scores(
                message_analysis.quality_score,
                code_quality_score(code_analysis.insights),
                self.policy.message_weight,
                self.policy.code_weight,
            )
            issues += extract_code_issues(code_analysis)
            insights += extract_code_insights(code_analysis)
            recommendations += extract_code_recommendations(code_analysis)
            method = "enhanced"

        return QualityAnalysisResult(
            quality_score=clamp(score),
            issues=issues,
            insights=insights,
            recommendations=recommendations,
            metrics=build_quality_metrics(request.commits),
            code_analysis=code_analysis,
            analysis_method=method,
            metadata=AnalysisMetadata(
                commits_analyzed=len(request.commits),
                analysis_date=started,
                method=message_analysis.method,
                timeframe=request.timeframe,
                cache_key=cache_key,
                model=model,
            ),
        )

    async def _persist(self, repository_id: str, started: datetime, cache_key: str, result: QualityAnalysisResult) -> None:
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.upsert, repository_id, started.date().isoformat(), cache_key, result)
        except Exception as e:
            self.logger.error(f"Failed to store quality analysis for {repository_id}: {str(e)}")

    def _fallback_result(self, request: AnalysisRequest, model: str, started: datetime, reason: str) -> QualityAnalysisResult:
        return QualityAnalysisResult(
            quality_score=NEUTRAL_SCORE,
            issues=[
                Issue(
                    type="analysis_error",
                    severity="low",
                    description=reason,
                    suggestion="Retry the analysis or review the commits manually",
                    commit_count=0,
                )
            ],
            insights=[f"Quality analysis unavailable for {len(request.commits)} commits"],
            recommendations=["Manual code review recommended"],
            analysis_method="basic",
            metadata=AnalysisMetadata(
                commits_analyzed=len(request.commits),
                analysis_date=started,
                method="fallback",
                timeframe=request.timeframe,
                model=model,
            ),
        )

    def _history(self, repository_id: str, days: int):
        if self.store is None:
            return []
        since = (self.clock() - timedelta(days=days)).date()
        return self.store.find_history(repository_id, since)

    def _require_store(self):
        if self.store is None:
            raise RuntimeError("No quality store configured")
        return self.store
