"""
providers.py

Responsibility: Find the newest upstream version string for a package.

Three independent lookups, each returning a single raw candidate ("" when none):
- release-monitoring.org project versions (`ReleaseMonitorClient`)
- GitHub releases or tags (`latest_github_release`)
- raw remote tag listing over git (`latest_git_tag`)

Candidates are returned untransformed; normalization happens in `versions.py`.
"""

from __future__ import annotations

import time
from typing import Any

import requests
import semver
from loguru import logger

from melange_updater.git import list_remote_tags
from melange_updater.github_client import GitHubClient
from melange_updater.versions import coerce

RELEASE_MONITOR_URL = "https://release-monitoring.org/api/v2/versions/"
RETRYABLE_STATUSES = (500, 503)


class ReleaseMonitorError(RuntimeError):
    pass


def _passes(value: str, prefix: str = "", contains: str = "") -> bool:
    if prefix and not value.startswith(prefix):
        return False
    if contains and contains not in value:
        return False
    return True


class ReleaseMonitorClient:
    """
    Client for the release-monitoring.org v2 versions endpoint.

    Transient failures (HTTP 500/503, connection errors, timeouts) are retried
    with exponential backoff: `initial_backoff * backoff_factor ** attempt` seconds.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        max_retries: int = 3,
        backoff_factor: float = 2,
        initial_backoff: float = 1.0,
        timeout: float = 15,
        base_url: str = RELEASE_MONITOR_URL,
    ) -> None:
        self._token = (token or "").strip()
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.initial_backoff = initial_backoff
        self.timeout = timeout
        self._base_url = base_url

    def _headers(self) -> dict[str, str]:
        if self._token:
            return {"Authorization": f"Token {self._token}"}
        return {}

    def _sleep(self, attempt: int) -> None:
        if attempt >= self.max_retries - 1:
            return
        time.sleep(self.initial_backoff * self.backoff_factor**attempt)

    def fetch(self, identifier: str | int) -> dict[str, Any]:
        last_err: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                r = requests.get(
                    self._base_url,
                    params={"project_id": str(identifier)},
                    headers=self._headers(),
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                last_err = e
                logger.warning(f"release-monitor {identifier}: attempt {attempt + 1} failed: {e}")
                self._sleep(attempt)
                continue
            if r.status_code == 200:
                data = r.json()
                return data if isinstance(data, dict) else {}
            last_err = ReleaseMonitorError(f"Non-OK HTTP {r.status_code} for project {identifier}")
            if r.status_code in RETRYABLE_STATUSES:
                logger.warning(f"release-monitor {identifier}: HTTP {r.status_code}, retrying")
                self._sleep(attempt)
                continue
            break
        if last_err is None:
            raise ReleaseMonitorError("max retries reached")
        if isinstance(last_err, ReleaseMonitorError):
            raise last_err
        raise ReleaseMonitorError(f"release-monitor request failed for project {identifier}: {last_err}") from last_err

    def latest_version(self, identifier: str | int, *, prefix: str = "", contains: str = "") -> str:
        """
        First stable version passing the filters; `latest_version` when the
        project reports no stable list at all.
        """
        data = self.fetch(identifier)
        stable = data.get("stable_versions")
        if isinstance(stable, list):
            filtered = [str(v) for v in stable if _passes(str(v), prefix, contains)]
            if filtered:
                return filtered[0]
            if not stable:
                return ""
        latest = data.get("latest_version")
        return str(latest) if latest else ""


def latest_github_release(
    client: GitHubClient,
    owner: str,
    repo: str,
    *,
    use_tag: bool = False,
    prefix: str = "",
    contains: str = "",
) -> str:
    """
    Newest published release tag (drafts and prereleases skipped), or with
    `use_tag` the newest tag. Falls back to the first entry unfiltered.
    """
    if use_tag:
        tags = [str(t.get("name") or "") for t in client.list_tags(owner, repo)]
        for name in tags:
            if name and _passes(name, prefix, contains):
                return name
        return tags[0] if tags else ""

    releases = client.list_releases(owner, repo)
    for release in releases:
        if release.get("draft") or release.get("prerelease"):
            continue
        candidate = str(release.get("tag_name") or release.get("name") or "")
        if _passes(candidate, prefix, contains):
            return candidate
    if releases:
        return str(releases[0].get("tag_name") or releases[0].get("name") or "")
    return ""


def pick_latest_tag(tags: list[str], *, prefix: str = "", contains: str = "") -> str:
    """Highest tag by coerced semver; the first filtered tag when none coerce."""
    filtered = [t for t in tags if _passes(t, prefix, contains)]
    if not filtered:
        return ""
    ranked: list[tuple[semver.Version, str]] = []
    for tag in filtered:
        coerced = coerce(tag)
        if coerced is not None:
            ranked.append((semver.Version.parse(coerced), tag))
    if ranked:
        # stable sort keeps advertised order among equal versions
        ranked.sort(key=lambda pair: pair[0], reverse=True)
        return ranked[0][1]
    return filtered[0]


def latest_git_tag(repo_url: str, *, prefix: str = "", contains: str = "") -> str:
    return pick_latest_tag(list_remote_tags(repo_url), prefix=prefix, contains=contains)
