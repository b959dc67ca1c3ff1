"""
discovery.py

Responsibility: Turn one manifest into at most one `UpdateDecision`.

Flow: provider -> transform -> ignore filter -> comparator -> commit resolver.
Provider errors propagate to the caller, which isolates them per manifest.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from melange_updater.commits import Provenance, resolve_commit
from melange_updater.git import GitError
from melange_updater.github_client import GitHubClient
from melange_updater.manifest import Manifest, pipeline_branch, pipeline_repository
from melange_updater.providers import ReleaseMonitorClient, latest_git_tag, latest_github_release
from melange_updater.redact import redact_secrets
from melange_updater.versions import is_newer, should_ignore, transform


@dataclass(frozen=True)
class Candidate:
    """A raw upstream version plus what is needed to pin its commit."""

    version: str
    provenance: Provenance
    tag: str = ""
    repo_url: str = ""
    branch: str = ""
    owner: str = ""
    repo: str = ""


@dataclass(frozen=True)
class UpdateDecision:
    name: str
    from_version: str
    to_version: str
    path: Path
    manual: bool
    commit: str = ""
    package_key: str = field(default="package", repr=False)

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        del data["package_key"]
        data["path"] = str(self.path)
        return data


@dataclass(frozen=True)
class PackageError:
    name: str
    phase: str
    message: str


def find_candidate(
    manifest: Manifest,
    *,
    github: GitHubClient,
    release_monitor: ReleaseMonitorClient,
) -> Candidate | None:
    """
    Query providers in order (release-monitor, GitHub, git tags) and return
    the first candidate found.
    """
    name = manifest.name
    policy = manifest.policy

    rm = policy.release_monitor
    if rm is not None and rm.identifier:
        logger.info(f"{name}: querying release-monitor id {rm.identifier}")
        latest = release_monitor.latest_version(
            rm.identifier,
            prefix=rm.version_filter_prefix,
            contains=rm.version_filter_contains,
        )
        if latest:
            git = policy.git
            return Candidate(
                version=latest,
                provenance=Provenance.RELEASE_MONITOR,
                repo_url=(git.repository if git else "") or pipeline_repository(manifest),
                branch=(git.branch if git else "") or pipeline_branch(manifest),
            )

    gh = policy.github
    if gh is not None and gh.identifier:
        owner, _, repo = gh.identifier.partition("/")
        if owner and repo:
            logger.info(f"{name}: querying GitHub releases {owner}/{repo}")
            latest = latest_github_release(
                github,
                owner,
                repo,
                use_tag=gh.use_tag,
                prefix=gh.tag_filter_prefix,
                contains=gh.tag_filter_contains,
            )
            if latest:
                return Candidate(version=latest, provenance=Provenance.GITHUB, tag=latest, owner=owner, repo=repo)

    git = policy.git
    if git is not None:
        repo_url = git.repository or pipeline_repository(manifest)
        if repo_url:
            logger.info(f"{name}: querying git tags from {redact_secrets(repo_url)}")
            try:
                latest = latest_git_tag(repo_url, prefix=git.tag_filter_prefix, contains=git.tag_filter_contains)
            except GitError as e:
                logger.warning(f"{name}: failed to query git tags: {e}")
                latest = ""
            if latest:
                return Candidate(
                    version=latest,
                    provenance=Provenance.GIT,
                    tag=latest,
                    repo_url=repo_url,
                    branch=git.branch or pipeline_branch(manifest),
                )
    return None


def decide(
    manifest: Manifest,
    *,
    github: GitHubClient,
    release_monitor: ReleaseMonitorClient,
) -> UpdateDecision | None:
    """
    Return the update to apply to this manifest, or None when it is up to
    date, disabled, ignored, or has no upstream candidate.
    """
    name = manifest.name
    policy = manifest.policy
    if not policy.enabled:
        logger.info(f"{name}: update.enabled is false, skipping")
        return None

    candidate = find_candidate(manifest, github=github, release_monitor=release_monitor)
    if candidate is None:
        logger.info(f"{name}: no candidate latest version found")
        return None

    transformed = transform(policy, candidate.version)
    logger.info(f"{name}: latest raw={candidate.version} transformed={transformed}")

    if should_ignore(policy, transformed):
        logger.info(f"{name}: version {transformed} ignored by ignore-regex-patterns")
        return None

    current = manifest.package.version
    if not current:
        logger.info(f"{name}: no current version in package metadata")

    if not is_newer(transformed, current):
        return None

    suffix = " (manual)" if policy.manual else ""
    logger.info(f"{name}: will update {current} -> {transformed}{suffix}")

    commit = ""
    if not policy.manual:
        commit = resolve_commit(
            candidate.provenance,
            client=github,
            tag=candidate.tag,
            repo_url=candidate.repo_url,
            branch=candidate.branch,
            owner=candidate.owner,
            repo=candidate.repo,
            package=name,
        )
    return UpdateDecision(
        name=name,
        from_version=current,
        to_version=transformed,
        path=manifest.path,
        manual=policy.manual,
        commit=commit,
        package_key=manifest.package.key,
    )
