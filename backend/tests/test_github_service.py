import asyncio
from unittest.mock import MagicMock

import pytest
from github.GithubException import GithubException, RateLimitExceededException

from quality_engine.services.github_service import GitHubDiffSource, GitHubError


def file_change(filename, patch):
    change = MagicMock()
    change.filename = filename
    change.status = "modified"
    change.additions = 1
    change.deletions = 1
    change.patch = patch
    return change


@pytest.fixture
def github():
    client = MagicMock()
    commit = client.get_repo.return_value.get_commit.return_value
    commit.files = [
        file_change("app.py", "@@ -1 +1 @@\n-a\n+b"),
        file_change("logo.png", None),
        file_change("README.md", "@@ -1 +1 @@\n-old\n+new"),
    ]
    return client


def test_missing_token_raises(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    with pytest.raises(GitHubError, match="No GitHub token"):
        GitHubDiffSource()


def test_invalid_token_format_raises():
    with pytest.raises(GitHubError, match="Invalid token format"):
        GitHubDiffSource(token="not-a-token")


@pytest.mark.parametrize("name", ["octo", "octo/", "/repo", "octo/repo/extra", "octo repo/x", ""])
def test_parse_repository_rejects_malformed_names(name):
    with pytest.raises(GitHubError):
        GitHubDiffSource.parse_repository(name)


def test_parse_repository():
    assert GitHubDiffSource.parse_repository("octo/repo") == {"owner": "octo", "repo": "repo"}


def test_patches_skip_binary_files(github):
    source = GitHubDiffSource(github=github)

    patches = source.get_commit_patches("octo/repo", "abc123")

    github.get_repo.assert_called_once_with("octo/repo")
    github.get_repo.return_value.get_commit.assert_called_once_with("abc123")
    assert [p["filename"] for p in patches] == ["app.py", "README.md"]


def test_get_diff_joins_patches(github):
    diff = asyncio.run(GitHubDiffSource(github=github).get_diff("octo/repo", "abc123"))
    assert diff == "@@ -1 +1 @@\n-a\n+b\n@@ -1 +1 @@\n-old\n+new"


def test_commit_without_patches_has_no_diff(github):
    github.get_repo.return_value.get_commit.return_value.files = [file_change("logo.png", None)]
    assert GitHubDiffSource(github=github).fetch_diff("octo/repo", "abc123") is None


def test_rate_limit_is_mapped(github):
    github.get_repo.side_effect = RateLimitExceededException(403, {"message": "rate limited"}, None)
    with pytest.raises(GitHubError, match="rate limit"):
        GitHubDiffSource(github=github).get_commit_patches("octo/repo", "abc123")


def test_api_error_is_mapped(github):
    github.get_repo.side_effect = GithubException(404, {"message": "Not Found"}, None)
    with pytest.raises(GitHubError, match="GitHub API error"):
        GitHubDiffSource(github=github).get_commit_patches("octo/repo", "abc123")


def test_verify_reports_rate_limit(github):
    github.get_user.return_value.login = "octocat"
    github.get_rate_limit.return_value.core.remaining = 4990
    github.get_rate_limit.return_value.core.limit = 5000

    assert GitHubDiffSource(github=github).verify() == {"remaining": 4990, "limit": 5000}


def test_verify_maps_unauthorized(github):
    github.get_user.side_effect = GithubException(401, {"message": "Bad credentials"}, None)
    with pytest.raises(GitHubError, match="Invalid or expired token"):
        GitHubDiffSource(github=github).verify()
