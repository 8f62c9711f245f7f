"""GitHub API client for pull requests and release metadata.

Provides a lightweight REST client for the code-hosting operations of the
update pipeline: duplicate PR detection, PR submission and release/compare
links for the PR description.
"""
from __future__ import annotations

import logging
import os
import re
from typing import Dict, Optional, Tuple
from urllib.parse import quote, urlparse

from constants import Constants
from common.http_client import get_json, post_json

logger = logging.getLogger(__name__)

_ARCHIVE_REF_RE = re.compile(r"/archive/(?:refs/tags/)?(.+?)(?:\.tar\.gz|\.tar\.bz2|\.tar\.xz|\.zip)$")
_RELEASE_DOWNLOAD_RE = re.compile(r"/releases/download/([^/]+)/")


class GitHubError(Exception):
    """A GitHub API call failed or a URL is not a GitHub URL."""


def parse_github_url(url: str) -> Tuple[str, str]:
    """Return ``(owner, repo)`` for a github.com source URL."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if host not in ("github.com", "www.github.com", "codeload.github.com"):
        raise GitHubError(f"Not a GitHub URL: {url}")
    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2:
        raise GitHubError(f"GitHub URL has no owner/repo: {url}")
    repo = parts[1][:-4] if parts[1].endswith(".git") else parts[1]
    return parts[0], repo


def parse_source_ref(url: str) -> str:
    """Extract the tag or commit a GitHub source URL points at."""
    path = urlparse(url).path
    for pattern in (_ARCHIVE_REF_RE, _RELEASE_DOWNLOAD_RE):
        m = pattern.search(path)
        if m:
            return m.group(1)
    if "codeload.github.com" in url:
        parts = [p for p in path.split("/") if p]
        if len(parts) >= 4:
            return parts[-1]
    raise GitHubError(f"Could not find a git reference in {url}")


def _is_update_title(title: str, package_name: str, new_version: str) -> bool:
    """Whether ``title`` proposes exactly ``new_version`` of ``package_name``."""
    head, sep, target = title.rpartition("->")
    if not sep or target.split()[:1] != [new_version]:
        return False
    # An attribute path prefix such as ``python3Packages.`` still names the package.
    return re.search(rf"(?<![\w-]){re.escape(package_name)}(?![\w.-])", head) is not None



class GitHubClient:
    """Lightweight REST client for GitHub API operations.

    Supports authentication via the GITHUB_TOKEN environment variable; PR
    submission requires it.
    """

    def __init__(
        self,
        repo: str = Constants.GITHUB_REPO,
        fork_owner: Optional[str] = None,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
    ):
        """Initialize GitHub client.

        Args:
            repo: ``owner/name`` of the repository PRs are opened against
            fork_owner: Owner of the fork the update branches are pushed to
            base_url: Base URL for the GitHub API (defaults to Constants.GITHUB_API_BASE)
            token: Personal access token (defaults to GITHUB_TOKEN env var)
        """
        self.repo = repo
        self.fork_owner = fork_owner
        self.base_url = base_url or Constants.GITHUB_API_BASE
        self.token = token or os.environ.get(Constants.ENV_GITHUB_TOKEN)

    def _get_headers(self) -> Dict[str, str]:
        """Get request headers including authorization if token is available."""
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def existing_update_pr(self, package_name: str, new_version: str) -> Optional[str]:
        """URL of an open PR whose title proposes this package at ``new_version``.

        Raises:
            GitHubError: If the search itself failed.
        """
        query = f'repo:{self.repo} is:pr is:open in:title "{package_name}"'
        url = f"{self.base_url}/search/issues?q={quote(query)}&per_page=100"
        status, _, data = get_json(url, headers=self._get_headers(), use_cache=False)
        if status != 200 or not isinstance(data, dict):
            raise GitHubError(f"PR search for {package_name} failed with status {status}")
        for item in data.get("items") or []:
            title = str(item.get("title", ""))
            if _is_update_title(title, package_name, new_version):
                return item.get("html_url") or title
        return None

    def create_pr(self, base: str, head_branch: str, title: str, body: str) -> str:
        """Open a pull request and return its URL.

        Raises:
            GitHubError: On any non-201 response.
        """
        if not self.token:
            raise GitHubError(f"{Constants.ENV_GITHUB_TOKEN} is required to open pull requests")
        head = f"{self.fork_owner}:{head_branch}" if self.fork_owner else head_branch
        url = f"{self.base_url}/repos/{self.repo}/pulls"
        payload = {"title": title, "head": head, "base": base, "body": body, "maintainer_can_modify": True}
        status, _, data = post_json(url, payload, headers=self._get_headers())
        if status != 201 or not isinstance(data, dict):
            detail = data.get("message") if isinstance(data, dict) else None
            raise GitHubError(f"Creating PR failed with status {status}: {detail}")
        return str(data.get("html_url", ""))

    def release_url(self, src_url: str, new_version: str) -> str:
        """HTML URL of the release matching ``new_version``.

        Raises:
            GitHubError: If the source is not on GitHub or no release matches.
        """
        owner, repo = parse_github_url(src_url)
        candidates = []
        try:
            candidates.append(parse_source_ref(src_url))
        except GitHubError:
            pass
        candidates.extend([f"v{new_version}", new_version])
        for tag in dict.fromkeys(candidates):
            url = f"{self.base_url}/repos/{owner}/{repo}/releases/tags/{quote(tag, safe='')}"
            status, _, data = get_json(url, headers=self._get_headers())
            if status == 200 and isinstance(data, dict) and data.get("html_url"):
                return str(data["html_url"])
        raise GitHubError(f"No GitHub release found for {owner}/{repo} {new_version}")

    def compare_url(self, old_src_url: str, new_src_url: str) -> str:
        """Web URL comparing the references behind two source URLs."""
        owner, repo = parse_github_url(new_src_url)
        old_ref = parse_source_ref(old_src_url)
        new_ref = parse_source_ref(new_src_url)
        return f"{Constants.GITHUB_WEB_BASE}/{owner}/{repo}/compare/{old_ref}...{new_ref}"

    def latest_version(self, src_url: str) -> str:
        """Version of the latest release, without a leading ``v``."""
        owner, repo = parse_github_url(src_url)
        url = f"{self.base_url}/repos/{owner}/{repo}/releases/latest"
        status, _, data = get_json(url, headers=self._get_headers())
        if status != 200 or not isinstance(data, dict) or not data.get("tag_name"):
            raise GitHubError(f"No latest release for {owner}/{repo} (status {status})")
        tag = str(data["tag_name"])
        return tag[1:] if tag[:1] in ("v", "V") and tag[1:2].isdigit() else tag
