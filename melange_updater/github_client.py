"""
github_client.py

Responsibility: Isolate all direct GitHub REST API interaction.

This module must be the only place that:
- Constructs GitHub REST endpoints
- Sends HTTP requests to api.github.com
- Interprets GitHub API responses / error payloads

Everything else (version lookup, commit pinning, PR flow) should use this client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import requests


class GitHubError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class RepoInfo:
    owner: str
    name: str
    html_url: str
    clone_url: str
    default_branch: str


@dataclass(frozen=True)
class PullRequest:
    number: int
    html_url: str


class GitHubClient:
    def __init__(self, token: str | None = None, api_base: str = "https://api.github.com") -> None:
        # Anonymous access is enough for dry-run lookups against public repos.
        self._token = (token or "").strip()
        self._api_base = api_base.rstrip("/")

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "melange-updater",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self._api_base}{path}"
        try:
            r = requests.request(method, url, headers=self._headers(), json=json_body, params=params, timeout=30)
        except requests.RequestException as e:
            raise GitHubError(f"GitHub API request failed {method} {path}: {e}") from e
        if r.status_code >= 400:
            try:
                payload = r.json()
            except ValueError:
                payload = {"message": r.text}
            message = payload.get("message", payload) if isinstance(payload, dict) else payload
            raise GitHubError(f"GitHub API error {r.status_code} {method} {path}: {message}", r.status_code)
        if r.status_code == 204:
            return None
        return r.json()

    def get_repo(self, owner: str, name: str) -> RepoInfo | None:
        """
        Return RepoInfo if the repo exists and is accessible; otherwise None.
        """
        try:
            data = self._request("GET", f"/repos/{owner}/{name}")
        except GitHubError as e:
            if e.status_code == 404:
                return None
            raise
        return RepoInfo(
            owner=owner,
            name=name,
            html_url=data["html_url"],
            clone_url=data["clone_url"],
            default_branch=data.get("default_branch") or "main",
        )

    # -- version lookup ------------------------------------------------------

    def list_releases(self, owner: str, repo: str, per_page: int = 100) -> list[dict[str, Any]]:
        return self._request("GET", f"/repos/{owner}/{repo}/releases", params={"per_page": per_page}) or []

    def list_tags(self, owner: str, repo: str, per_page: int = 100) -> list[dict[str, Any]]:
        return self._request("GET", f"/repos/{owner}/{repo}/tags", params={"per_page": per_page}) or []

    # -- commit pinning ------------------------------------------------------

    def get_tag_ref(self, owner: str, repo: str, tag: str) -> dict[str, Any]:
        """The `object` of refs/tags/<tag>: {"sha": ..., "type": "commit" | "tag"}."""
        data = self._request("GET", f"/repos/{owner}/{repo}/git/ref/tags/{quote(tag, safe='/')}")
        return data.get("object") or {}

    def get_tag_object(self, owner: str, repo: str, sha: str) -> dict[str, Any]:
        """The object an annotated tag points at."""
        data = self._request("GET", f"/repos/{owner}/{repo}/git/tags/{sha}")
        return data.get("object") or {}

    def get_release_by_tag(self, owner: str, repo: str, tag: str) -> dict[str, Any]:
        return self._request("GET", f"/repos/{owner}/{repo}/releases/tags/{quote(tag, safe='/')}")

    def get_branch_head(self, owner: str, repo: str, branch: str) -> str:
        data = self._request("GET", f"/repos/{owner}/{repo}/branches/{quote(branch, safe='/')}")
        return str((data.get("commit") or {}).get("sha") or "")

    # -- change requests -----------------------------------------------------

    def create_issue(self, owner: str, repo: str, *, title: str, body: str) -> dict[str, Any]:
        return self._request("POST", f"/repos/{owner}/{repo}/issues", json_body={"title": title, "body": body})

    def create_pull_request(self, owner: str, repo: str, *, title: str, head: str, base: str, body: str) -> PullRequest:
        data = self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json_body={"title": title, "head": head, "base": base, "body": body},
        )
        return PullRequest(number=int(data["number"]), html_url=data["html_url"])

    def find_open_pull_request(self, owner: str, repo: str, head: str) -> PullRequest | None:
        """
        Return the open PR whose head is `owner:head`, if any.
        """
        pulls = self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls",
            params={"state": "open", "head": f"{owner}:{head}", "per_page": 1},
        )
        if not pulls:
            return None
        return PullRequest(number=int(pulls[0]["number"]), html_url=pulls[0]["html_url"])

    def add_labels(self, owner: str, repo: str, number: int, labels: list[str]) -> None:
        self._request("POST", f"/repos/{owner}/{repo}/issues/{number}/labels", json_body={"labels": labels})
