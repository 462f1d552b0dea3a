from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from quality_engine.db.database import build_engine, build_session_factory, check_db_connection, init_db
from quality_engine.db.models import QualityAnalysisRecord
from quality_engine.db.quality_store import QualityStoreError, SqlQualityStore, as_naive_utc
from quality_engine.schemas import AnalysisMetadata, Issue, QualityAnalysisResult

NOW = datetime(2024, 3, 15, 12, 0)


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock():
    return {"now": NOW}


@pytest.fixture
def sql_store(session_factory, clock):
    return SqlQualityStore(session_factory, clock=lambda: clock["now"])


def result(score=0.7, method="basic"):
    return QualityAnalysisResult(
        quality_score=score,
        issues=[Issue(description="Vague messages", severity="low")],
        insights=["Analyzed 3 commits"],
        analysis_method=method,
        metadata=AnalysisMetadata(commits_analyzed=3, analysis_date=NOW, cache_key="k"),
    )


def test_connection_check(session_factory):
    assert check_db_connection(session_factory) is True


def test_connection_check_reports_failure():
    factory = MagicMock(side_effect=OperationalError("SELECT 1", {}, Exception("refused")))
    assert check_db_connection(factory) is False


def test_upsert_then_find_fresh_round_trips_payload(sql_store):
    sql_store.upsert("octo/repo", "2024-03-15", "key-1", result(0.7, "enhanced"))

    record = sql_store.find_fresh("octo/repo", "key-1", timedelta(hours=4))

    assert record.cache_key == "key-1"
    assert record.analysis_date == "2024-03-15"
    assert record.payload.quality_score == pytest.approx(0.7)
    assert record.payload.analysis_method == "enhanced"
    assert record.payload.issues[0].description == "Vague messages"
    assert record.payload.metadata.commits_analyzed == 3


def test_payload_is_stored_with_camel_case_keys(sql_store, session_factory):
    sql_store.upsert("repo", "2024-03-15", "key-1", result())

    db = session_factory()
    try:
        row = db.query(QualityAnalysisRecord).one()
        assert "qualityScore" in row.payload
        assert row.to_dict()["cacheKey"] == "key-1"
    finally:
        db.close()


def test_find_fresh_ignores_stale_records(sql_store, clock):
    sql_store.upsert("repo", "2024-03-15", "key-1", result())
    clock["now"] = NOW + timedelta(hours=5)

    assert sql_store.find_fresh("repo", "key-1", timedelta(hours=4)) is None


def test_find_fresh_is_scoped_by_repository(sql_store):
    sql_store.upsert("repo-a", "2024-03-15", "key-1", result())
    assert sql_store.find_fresh("repo-b", "key-1", timedelta(hours=4)) is None


def test_upsert_is_idempotent_per_key_and_resets_freshness(sql_store, session_factory, clock):
    sql_store.upsert("repo", "2024-03-15", "key-1", result(0.4))
    clock["now"] = NOW + timedelta(hours=3)
    sql_store.upsert("repo", "2024-03-15", "key-1", result(0.8))

    db = session_factory()
    try:
        rows = db.query(QualityAnalysisRecord).all()
        assert len(rows) == 1
        assert rows[0].quality_score == pytest.approx(0.8)
        assert rows[0].created_at == NOW + timedelta(hours=3)
    finally:
        db.close()

    clock["now"] = NOW + timedelta(hours=6)
    assert sql_store.find_fresh("repo", "key-1", timedelta(hours=4)) is not None


def test_history_is_ordered_and_bounded(sql_store):
    sql_store.upsert("repo", "2024-03-14", "key-b", result(0.6))
    sql_store.upsert("repo", "2024-03-10", "key-a", result(0.5))
    sql_store.upsert("repo", "2024-01-01", "key-old", result(0.1))
    sql_store.upsert("other", "2024-03-12", "key-c", result(0.9))

    history = sql_store.find_history("repo", date(2024, 3, 1))

    assert [r.analysis_date for r in history] == ["2024-03-10", "2024-03-14"]
    assert [r.payload.quality_score for r in history] == pytest.approx([0.5, 0.6])


def test_delete_older_than(sql_store, clock):
    sql_store.upsert("repo", "2024-03-15", "key-1", result())
    sql_store.upsert("other", "2024-03-15", "key-1", result())
    clock["now"] = NOW + timedelta(hours=2)
    sql_store.upsert("repo", "2024-03-15", "key-2", result())

    assert sql_store.delete_older_than("repo", NOW + timedelta(hours=1)) == 1
    assert sql_store.find_fresh("repo", "key-2", timedelta(hours=4)) is not None
    assert sql_store.delete_older_than(None, NOW + timedelta(hours=1)) == 1


def test_stats(sql_store, clock):
    sql_store.upsert("repo", "2024-03-15", "key-1", result(0.4))
    sql_store.upsert("repo", "2024-03-15", "key-2", result(0.8))
    clock["now"] = NOW + timedelta(days=10)
    sql_store.upsert("other", "2024-03-25", "key-1", result(0.3))

    repo_stats = sql_store.stats("repo")
    assert repo_stats.total_analyses == 2
    assert repo_stats.recent_analyses == 0
    assert repo_stats.average_quality_score == pytest.approx(0.6)

    all_stats = sql_store.stats()
    assert all_stats.total_analyses == 3
    assert all_stats.recent_analyses == 1
    assert all_stats.repository_id == "all"


def test_database_errors_are_wrapped():
    factory = MagicMock()
    factory.return_value.execute.side_effect = OperationalError("SELECT", {}, Exception("gone"))
    store = SqlQualityStore(factory)

    with pytest.raises(QualityStoreError):
        store.find_fresh("repo", "key", timedelta(hours=1))
    factory.return_value.close.assert_called()


def test_as_naive_utc_converts_aware_datetimes():
    aware = datetime(2024, 3, 15, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert as_naive_utc(aware) == datetime(2024, 3, 15, 12, 0)
    assert as_naive_utc(NOW) is NOW


def test_find_similar_by_commit_count(sql_store, clock):
    def analysed(count):
        return QualityAnalysisResult(
            quality_score=0.6,
            metadata=AnalysisMetadata(commits_analyzed=count, analysis_date=NOW),
        )

    sql_store.upsert("repo", "2024-03-15", "key-8", analysed(8))
    clock["now"] = NOW + timedelta(hours=1)
    sql_store.upsert("repo", "2024-03-15", "key-12", analysed(12))
    sql_store.upsert("repo", "2024-03-15", "key-30", analysed(30))
    sql_store.upsert("other", "2024-03-15", "key-10", analysed(10))

    similar = sql_store.find_similar("repo", 10)

    assert [r.cache_key for r in similar] == ["key-12", "key-8"]
    assert [r.cache_key for r in sql_store.find_similar("repo", 10, limit=1)] == ["key-12"]
    assert sql_store.find_similar("repo", 2, tolerance=1) == []
