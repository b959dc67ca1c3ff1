"""
commits.py

Responsibility: Resolve the commit a new version should be pinned to (`expected-commit`).

The strategy depends on where the version came from:
- github: tag ref via the API (peeling annotated tags), then the release's
  target branch tip, then `git ls-remote` against the public clone URL
- git: `git ls-remote` tag dereference against the configured repository
- release-monitor: tip of the branch declared by the manifest

Resolution failures never abort a run: the result is "" and a warning is logged.
"""

from __future__ import annotations

import re
from enum import Enum

from loguru import logger

from melange_updater.git import resolve_branch_head, resolve_tag_commit
from melange_updater.github_client import GitHubClient, GitHubError

_SHA_RE = re.compile(r"^[0-9a-f]{40}$")


class Provenance(str, Enum):
    RELEASE_MONITOR = "release-monitor"
    GITHUB = "github"
    GIT = "git"


def tag_candidates(tag: str) -> list[str]:
    """The tag itself, then the same tag with its `v` prefix toggled."""
    alt = tag[1:] if tag.startswith("v") else f"v{tag}"
    return [tag, alt] if alt and alt != tag else [tag]


def _from_tag_ref(client: GitHubClient, owner: str, repo: str, tag: str) -> str:
    obj = client.get_tag_ref(owner, repo, tag)
    sha = str(obj.get("sha") or "")
    if sha and obj.get("type") == "tag":
        sha = str(client.get_tag_object(owner, repo, sha).get("sha") or "")
    return sha


def _from_release_target(client: GitHubClient, owner: str, repo: str, tag: str) -> str:
    target = str(client.get_release_by_tag(owner, repo, tag).get("target_commitish") or "")
    if not target:
        return ""
    if _SHA_RE.match(target):
        return target
    return client.get_branch_head(owner, repo, target)


def resolve_github_commit(client: GitHubClient, owner: str, repo: str, tag: str, *, package: str = "") -> str:
    errors: list[str] = []
    candidates = tag_candidates(tag)
    for strategy in (_from_tag_ref, _from_release_target):
        for candidate in candidates:
            try:
                sha = strategy(client, owner, repo, candidate)
            except GitHubError as e:
                errors.append(str(e))
                continue
            if sha:
                return sha

    clone_url = f"https://github.com/{owner}/{repo}.git"
    for candidate in candidates:
        sha = resolve_tag_commit(clone_url, candidate)
        if sha:
            return sha

    detail = f": {errors[-1]}" if errors else ""
    logger.debug(f"{package}: GitHub commit lookup for tag {tag} exhausted{detail}")
    return ""


def resolve_commit(
    provenance: Provenance | str,
    *,
    client: GitHubClient | None = None,
    tag: str = "",
    repo_url: str = "",
    branch: str = "",
    owner: str = "",
    repo: str = "",
    package: str = "",
) -> str:
    """
    Return the commit sha to pin, or "" when it cannot be determined.
    """
    provenance = Provenance(provenance)
    sha = ""
    if provenance is Provenance.GITHUB and tag and owner and repo and client is not None:
        sha = resolve_github_commit(client, owner, repo, tag, package=package)
    elif provenance is Provenance.GIT and repo_url and tag:
        sha = resolve_tag_commit(repo_url, tag)
    elif provenance is Provenance.RELEASE_MONITOR and repo_url and branch:
        sha = resolve_branch_head(repo_url, branch)
    if not sha:
        logger.warning(f"{package}: no commit resolved for {provenance.value} update; expected-commit left unchanged")
    return sha
