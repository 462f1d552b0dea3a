import asyncio
import logging
import os
import re
from typing import Dict, List, Optional

from github import Auth, Github
from github.GithubException import GithubException, RateLimitExceededException

logger = logging.getLogger(__name__)

REPOSITORY_RE = re.compile(r"^([^/\s]+)/([^/\s]+)$")


class GitHubError(Exception):
    """Custom exception for GitHub-related errors"""
    pass


class GitHubDiffSource:
    """Fetches commit diffs (joined file patches) from the GitHub API."""

    def __init__(self, token: Optional[str] = None, github: Optional[Github] = None):
        if github is not None:
            self.github = github
            return

        # Use GITHUB_TOKEN for authentication
        token = token or os.getenv("GITHUB_TOKEN")
        if not token:
            raise GitHubError("No GitHub token found. Set GITHUB_TOKEN environment variable.")

        # Validate token format
        if not token.startswith(("ghp_", "github_pat_", "ghs_", "gho_")):
            raise GitHubError("Invalid token format. Token must start with 'ghp_' or 'github_pat_'")

        self.github = Github(auth=Auth.Token(token))

    def verify(self) -> Dict[str, int]:
        """Check the token against the API and report the remaining rate limit."""
        try:
            user = self.github.get_user()
            rate_limit = self.github.get_rate_limit()
            logger.info(f"Authenticated with GitHub as {user.login}")
            return {"remaining": rate_limit.core.remaining, "limit": rate_limit.core.limit}
        except GithubException as e:
            if e.status == 401:
                raise GitHubError("Invalid or expired token. Please check GITHUB_TOKEN value.")
            elif e.status == 403:
                raise GitHubError(f"Token lacks required permissions: {str(e)}")
            else:
                raise GitHubError(f"GitHub API error: {str(e)}")

    @staticmethod
    def parse_repository(repository_full_name: str) -> Dict[str, str]:
        match = REPOSITORY_RE.match(repository_full_name or "")
        if not match:
            raise GitHubError(f"Invalid repository format: {repository_full_name}")
        return {"owner": match.group(1), "repo": match.group(2)}

    def get_commit_patches(self, repository_full_name: str, commit_sha: str) -> List[Dict]:
        """Per-file changes of one commit, skipping files without a patch."""
        parsed = self.parse_repository(repository_full_name)
        try:
            repo = self.github.get_repo(f"{parsed['owner']}/{parsed['repo']}")
            commit = repo.get_commit(commit_sha)
            changes = []
            for file in commit.files:
                # Skip binary files and files without patches
                if not file.patch:
                    continue
                changes.append({
                    "filename": file.filename,
                    "status": file.status,
                    "additions": file.additions,
                    "deletions": file.deletions,
                    "patch": file.patch,
                })
            return changes
        except RateLimitExceededException:
            raise GitHubError("GitHub API rate limit exceeded. Please try again later.")
        except GithubException as e:
            raise GitHubError(f"GitHub API error: {str(e)}")

    def fetch_diff(self, repository_full_name: str, commit_sha: str) -> Optional[str]:
        logger.info(f"Fetching diff for commit {commit_sha[:8]} in {repository_full_name}")
        patches = self.get_commit_patches(repository_full_name, commit_sha)
        diff = "\n".join(change["patch"] for change in patches)
        if not diff.strip():
            logger.info(f"No diff content available for commit {commit_sha[:8]}")
            return None
        return diff

    async def get_diff(self, repository_full_name: str, commit_sha: str) -> Optional[str]:
        # PyGithub calls block
        return await asyncio.to_thread(self.fetch_diff, repository_full_name, commit_sha)
