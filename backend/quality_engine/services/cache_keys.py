from datetime import date, datetime, timezone
from typing import Optional, Sized

KEY_PREFIX = "quality"
DEFAULT_BUCKET_SIZE = 10


def commit_count_bucket(commit_count: int, bucket_size: int = DEFAULT_BUCKET_SIZE) -> int:
    """Round a commit count to the nearest multiple of ``bucket_size``.

    With the default size, 5-14 commits share bucket 10 and 0-4 share bucket 0,
    so small changes to the commit set keep hitting the same cache entry.
    """
    return ((commit_count + bucket_size // 2) // bucket_size) * bucket_size


def day_bucket(today: Optional[date] = None) -> str:
    if today is None:
        today = datetime.now(timezone.utc).date()
    elif isinstance(today, datetime):
        today = today.date()
    return today.isoformat()


def normalize_repository_id(repository_id: str) -> str:
    return str(repository_id).strip().replace("/", "-")


def generate_cache_key(
    commits: Sized,
    repository_id: str,
    timeframe: str,
    today: Optional[date] = None,
    bucket_size: int = DEFAULT_BUCKET_SIZE,
) -> str:
    """Build the cache key for a quality analysis.

    The key depends on the repository, the timeframe, the day and the
    commit-count bucket only, never on the exact commits.
    """
    bucket = commit_count_bucket(len(commits), bucket_size)
    return f"{KEY_PREFIX}-{normalize_repository_id(repository_id)}-{timeframe}-{day_bucket(today)}-{bucket}"
