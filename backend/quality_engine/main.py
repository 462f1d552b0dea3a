import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import Field

from quality_engine.config import get_settings
from quality_engine.db.database import SessionLocal, check_db_connection, init_db
from quality_engine.db.quality_store import QualityStoreError, SqlQualityStore
from quality_engine.schemas import AnalysisRequest, CamelModel, CommitRecord
from quality_engine.services.ai_client import AIClientError, LangChainCompletionClient
from quality_engine.services.github_service import GitHubDiffSource, GitHubError
from quality_engine.services.quality_service import QualityAnalysisService

settings = get_settings()
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Commit Quality Engine API",
    description="Cached, AI-assisted quality analysis and trend tracking for repository commits",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allows all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allows all methods
    allow_headers=["*"],  # Allows all headers
)


class CacheKeyRequest(CamelModel):
    commits: List[CommitRecord] = Field(default_factory=list)
    repository_id: str
    timeframe: str = "weekly"


@lru_cache(maxsize=1)
def get_quality_service() -> QualityAnalysisService:
    """Build the service once; missing credentials degrade it instead of failing."""
    init_db()

    ai_client = None
    if settings.openai_api_key:
        try:
            ai_client = LangChainCompletionClient(
                model=settings.policy.default_model,
                api_key=settings.openai_api_key.get_secret_value(),
            )
        except AIClientError as e:
            logger.warning(f"AI client unavailable, using heuristic analysis: {str(e)}")
    else:
        logger.warning("OPENAI_API_KEY not set, using heuristic analysis")

    diff_source = None
    if settings.github_token:
        try:
            diff_source = GitHubDiffSource(token=settings.github_token)
        except GitHubError as e:
            logger.warning(f"GitHub diff source unavailable, code analysis disabled: {str(e)}")

    return QualityAnalysisService(
        store=SqlQualityStore(SessionLocal),
        ai_client=ai_client,
        diff_source=diff_source,
        policy=settings.policy,
    )


@app.get("/healthz")
async def healthz():
    """Health check endpoint that also verifies database connection."""
    db_status = "ok" if check_db_connection() else "error"
    return {
        "status": "ok",
        "database": db_status,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.post("/api/quality/analyze")
async def analyze_quality(request: AnalysisRequest, service: QualityAnalysisService = Depends(get_quality_service)):
    """Analyze commit quality, served from cache when a fresh result exists."""
    result = await service.analyze(request)
    return result.to_dict()


@app.get("/api/quality/trends")
def quality_trends(
    repository_id: str = Query(..., alias="repositoryId"),
    days: int = Query(30, ge=1, le=365),
    service: QualityAnalysisService = Depends(get_quality_service),
):
    return service.get_quality_trends(repository_id, days).to_dict()


@app.get("/api/quality/trends/multi")
def multi_repo_trends(
    repository_ids: List[str] = Query(..., alias="repositoryIds"),
    days: int = Query(30, ge=1, le=365),
    service: QualityAnalysisService = Depends(get_quality_service),
):
    return service.get_multi_repo_trends(repository_ids, days).to_dict()


@app.post("/api/quality/cache-key")
def cache_key(request: CacheKeyRequest, service: QualityAnalysisService = Depends(get_quality_service)):
    return {"cacheKey": service.generate_cache_key(request.commits, request.repository_id, request.timeframe)}


@app.delete("/api/quality/cache")
def clear_cache(
    repository_id: str = Query(..., alias="repositoryId"),
    older_than_hours: float = Query(24, ge=0, alias="olderThanHours"),
    service: QualityAnalysisService = Depends(get_quality_service),
):
    try:
        deleted = service.clear_cache(repository_id, older_than_hours)
        return {"repositoryId": repository_id, "deleted": deleted}
    except QualityStoreError as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.delete("/api/quality/history")
def cleanup_old_data(
    days: int = Query(90, ge=1),
    service: QualityAnalysisService = Depends(get_quality_service),
):
    """Prune analyses of every repository older than ``days``."""
    try:
        return {"deleted": service.cleanup_old_data(days)}
    except QualityStoreError as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@app.get("/api/quality/similar")
def similar_analyses(
    repository_id: str = Query(..., alias="repositoryId"),
    commit_count: int = Query(..., ge=0, alias="commitCount"),
    limit: int = Query(5, ge=1, le=50),
    service: QualityAnalysisService = Depends(get_quality_service),
):
    records = service.find_similar_analyses(repository_id, commit_count, limit)
    return {"repositoryId": repository_id, "analyses": [record.to_dict() for record in records]}


@app.get("/api/quality/stats")
def quality_stats(
    repository_id: Optional[str] = Query(None, alias="repositoryId"),
    service: QualityAnalysisService = Depends(get_quality_service),
):
    try:
        return service.get_stats(repository_id).to_dict()
    except QualityStoreError as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("quality_engine.main:app", host="0.0.0.0", port=8000, log_level=settings.log_level.lower())
