"""
cli.py

Responsibility: CLI entrypoint for melange-updater.

High-level flow (single command `update`):
1) Discover manifests -> `Manifest`
2) Per manifest, decide whether a newer upstream version exists -> `UpdateDecision`
3) Depending on mode: print (dry-run), apply locally (preview), or for each
   package apply on its own branch, commit, push and open a PR
4) Write the step summary

This module should orchestrate behavior but keep concerns isolated:
- Manifest parsing: `manifest.py`
- Version decisions: `discovery.py`
- File edits: `editor.py`
- GitHub API: `github_client.py`
- git commands: `git.py`
"""

from __future__ import annotations

import argparse
import json
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from loguru import logger

from melange_updater import git
from melange_updater.discovery import PackageError, UpdateDecision, decide
from melange_updater.editor import apply_pinned_commit, apply_version
from melange_updater.github_client import GitHubClient, GitHubError
from melange_updater.manifest import Manifest, find_manifests
from melange_updater.providers import ReleaseMonitorClient
from melange_updater.redact import redact_secrets, sanitize_name
from melange_updater.report import ISSUE_TITLE, PR_TITLE, RunReport, render_issue_body, render_pr_body, write_summary

_TARGET_REPO_RE = re.compile(r"^[^\s/]+/[^\s/]+$")
BRANCH_PREFIX = "melange-update-"


class CLIError(RuntimeError):
    pass


def _input(name: str, fallback: str = "") -> str:
    """
    Read a GitHub Actions input (`INPUT_<NAME>`), falling back when unset.
    """
    key = f"INPUT_{name.replace('-', '_').upper()}"
    value = os.environ.get(key, "").strip()
    return value or fallback


@dataclass(frozen=True)
class Options:
    target_repo: str
    token: str
    dry_run: bool
    preview: bool
    release_monitor_token: str
    git_author_name: str
    git_author_email: str
    repo_path: Path
    labels: list[str]

    @property
    def owner(self) -> str:
        return self.target_repo.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.target_repo.split("/", 1)[1]


def _resolve_options(args: argparse.Namespace) -> Options:
    target_repo = args.target_repo or _input("repository")
    token = args.token or os.environ.get("GITHUB_TOKEN") or _input("token")
    dry_run = bool(args.dry_run)
    preview = bool(args.preview)

    if not target_repo:
        raise CLIError("No target repo specified. Use --target-repo owner/repo")
    if not _TARGET_REPO_RE.match(target_repo):
        raise CLIError("Invalid target repo format. Expected owner/repo")
    if not token and not dry_run and not preview:
        raise CLIError("No token provided. Use --token or set GITHUB_TOKEN (or run with --dry-run/--preview/--no-commit)")

    labels_raw = args.github_labels or _input("github-labels")
    repo_path = args.repo_path or _input("repo-path") or os.environ.get("GITHUB_WORKSPACE") or "."

    return Options(
        target_repo=target_repo,
        token=token,
        dry_run=dry_run,
        preview=preview,
        release_monitor_token=(
            args.release_monitor_token
            or os.environ.get("RELEASE_MONITOR_TOKEN")
            or _input("release_monitor_token")
        ),
        git_author_name=args.git_author_name or _input("git_author_name", "melange-updater"),
        git_author_email=args.git_author_email or _input("git_author_email", "noreply@example.com"),
        repo_path=Path(repo_path).resolve(),
        labels=[s.strip() for s in labels_raw.split(",") if s.strip()],
    )


def report_failure(github: GitHubClient, opts: Options, name: str, message: str, phase: str) -> None:
    """
    Open a GitHub issue for a package failure. Never raises.
    """
    if not github.has_token:
        logger.warning(f"Cannot create issue for {name} ({phase}): no token available.")
        return
    title = ISSUE_TITLE.format(name=name)
    try:
        github.create_issue(opts.owner, opts.repo, title=title, body=render_issue_body(name, message, phase))
    except GitHubError as e:
        logger.warning(f"Failed to create issue for {name}: {redact_secrets(str(e))}")
        return
    logger.info(f"Created issue for {name}: {title}")


def collect_decisions(
    manifests: dict[str, Manifest],
    *,
    github: GitHubClient,
    release_monitor: ReleaseMonitorClient,
    report: RunReport,
    on_error: Callable[[str, str, str], None] | None = None,
) -> dict[str, UpdateDecision]:
    """
    Run the decision pipeline for every manifest. A failure in one manifest is
    logged, recorded in `report.errors` and handed to `on_error`; it never stops
    the others.
    """
    decisions: dict[str, UpdateDecision] = {}
    for name, manifest in manifests.items():
        try:
            decision = decide(manifest, github=github, release_monitor=release_monitor)
        except Exception as e:  # noqa: BLE001 - isolate per-manifest failures
            message = redact_secrets(str(e))
            logger.warning(f"failed to process package {name}: {message}")
            report.errors.append(PackageError(name=name, phase="version discovery", message=message))
            if on_error is not None:
                on_error(name, message, "version discovery")
            continue
        if decision is not None:
            decisions[name] = decision
    report.decisions = list(decisions.values())
    return decisions


def apply_decision(decision: UpdateDecision) -> bool:
    changed = apply_version(decision.path, decision.to_version, package_key=decision.package_key)
    if decision.commit:
        changed = apply_pinned_commit(decision.path, decision.commit) or changed
    return changed


def _checkout_quietly(branch: str, cwd: Path) -> None:
    try:
        git.run_git(["checkout", branch], cwd=cwd)
    except git.GitError as e:
        logger.debug(f"Cleanup checkout of {branch} failed: {e}")


def _prepare_branch(branch: str, default_branch: str, remote_url: str, cwd: Path) -> None:
    remote_head = git.git_output(["ls-remote", remote_url, f"refs/heads/{branch}"], cwd=cwd).strip()
    if remote_head:
        # Reuse the existing update branch so the open PR is updated, not duplicated.
        git.run_git(["fetch", remote_url, f"{branch}:{branch}"], cwd=cwd)
        git.run_git(["checkout", branch], cwd=cwd)
    else:
        git.run_git(["checkout", "-B", branch, default_branch], cwd=cwd)


def open_pull_requests(
    decisions: list[UpdateDecision],
    *,
    opts: Options,
    github: GitHubClient,
    report: RunReport,
) -> None:
    cwd = opts.repo_path
    repo_info = github.get_repo(opts.owner, opts.repo)
    if repo_info is None:
        raise CLIError(f"Target repository {opts.target_repo} not found or not accessible")
    default_branch = repo_info.default_branch
    starting_branch = git.current_branch(cwd) or default_branch
    remote_url = git.tokenized_https_remote(opts.target_repo, opts.token)

    reason = git.dirty_reason(cwd)
    if reason:
        raise CLIError(reason)

    git.run_git(["config", "user.name", opts.git_author_name], cwd=cwd)
    git.run_git(["config", "user.email", opts.git_author_email], cwd=cwd)

    try:
        for d in decisions:
            branch = f"{BRANCH_PREFIX}{sanitize_name(d.name)}"
            try:
                git.run_git(["checkout", default_branch], cwd=cwd)
                _prepare_branch(branch, default_branch, remote_url, cwd)

                apply_decision(d)
                git.run_git(["add", "-A"], cwd=cwd)
                if not git.has_changes(cwd):
                    logger.info(f"{d.name}: no changes to commit after applying update; skipping push/PR.")
                    continue

                git.run_git(["commit", "-m", f"chore(update): automatic update for {d.name}"], cwd=cwd)

                try:
                    git.run_git(["push", remote_url, branch], cwd=cwd)
                except git.GitError as e:
                    message = redact_secrets(str(e))
                    logger.warning(f"Failed to push branch for {d.name}: {message}")
                    report.failed.append(d.name)
                    report.errors.append(PackageError(name=d.name, phase="git push", message=message))
                    report_failure(github, opts, d.name, message, "git push")
                    continue

                existing = github.find_open_pull_request(opts.owner, opts.repo, branch)
                if existing is not None:
                    logger.info(f"{d.name}: updated existing PR {existing.html_url}")
                    report.created_prs.append((d.name, existing.html_url))
                    continue

                pr = github.create_pull_request(
                    opts.owner,
                    opts.repo,
                    title=PR_TITLE.format(name=d.name),
                    head=branch,
                    base=default_branch,
                    body=render_pr_body(d, opts.labels),
                )
                logger.info(f"Created PR: {pr.html_url}")
                if opts.labels:
                    try:
                        github.add_labels(opts.owner, opts.repo, pr.number, opts.labels)
                        logger.info(f"Added labels to PR {pr.number}: {', '.join(opts.labels)}")
                    except GitHubError as e:
                        logger.warning(f"Failed adding labels for PR {pr.number}: {e}")
                report.created_prs.append((d.name, pr.html_url))
            except Exception as e:  # noqa: BLE001 - isolate per-package failures
                message = redact_secrets(str(e))
                logger.warning(f"Failed to create PR for {d.name}: {message}")
                report.errors.append(PackageError(name=d.name, phase="PR creation", message=message))
                report.failed.append(d.name)
                report_failure(github, opts, d.name, message, "PR creation")
            finally:
                _checkout_quietly(default_branch, cwd)
    finally:
        _checkout_quietly(starting_branch, cwd)


def update_cmd(args: argparse.Namespace) -> int:
    opts = _resolve_options(args)
    logger.info(f"Repository path: {opts.repo_path}")

    manifests = find_manifests(opts.repo_path)
    logger.info(f"Found {len(manifests)} candidate melange packages")

    github = GitHubClient(opts.token)
    release_monitor = ReleaseMonitorClient(opts.release_monitor_token)
    report = RunReport()

    def on_error(name: str, message: str, phase: str) -> None:
        if not opts.dry_run and not opts.preview:
            report_failure(github, opts, name, message, phase)

    decisions = collect_decisions(
        manifests,
        github=github,
        release_monitor=release_monitor,
        report=report,
        on_error=on_error,
    )
    automatic = [d for d in decisions.values() if not d.manual]

    if not decisions:
        logger.info("No updates detected. Exiting without creating a branch.")
        report.mode = "no-updates"
    elif opts.dry_run:
        logger.info("Dry run enabled; the following updates would be applied:")
        print(json.dumps({name: d.as_dict() for name, d in decisions.items()}, indent=2))
        report.mode = "dry-run"
    elif opts.preview:
        for d in automatic:
            try:
                apply_decision(d)
            except Exception as e:  # noqa: BLE001 - isolate per-package failures
                message = redact_secrets(str(e))
                logger.warning(f"Failed to apply update for {d.name}: {message}")
                report.errors.append(PackageError(name=d.name, phase="apply update", message=message))
                report.failed.append(d.name)
        logger.info("Preview mode: updates applied locally; no branch/commit/push/PR.")
        report.mode = "preview"
    elif not automatic:
        logger.info("Only manual updates detected; nothing to auto-apply.")
        report.mode = "manual-only"
    else:
        report.mode = "pr"
        open_pull_requests(automatic, opts=opts, github=github, report=report)
        logger.info(f"PRs created: {len(report.created_prs)}")
        for name, url in report.created_prs:
            logger.info(f"- {name}: {url}")
        if report.failed:
            logger.info(f"Packages that failed to push/PR: {', '.join(report.failed)}")

    if report.manual:
        pending = ", ".join(f"{d.name} ({d.from_version} -> {d.to_version})" for d in report.manual)
        logger.info(f"Manual updates were detected and not auto-applied: {pending}")

    write_summary(report)
    logger.info("Done.")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="melange-updater", description="Bump melange package versions from upstream releases")
    p.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    sub = p.add_subparsers(dest="command", required=True)

    u = sub.add_parser("update", help="Check manifests for newer upstream versions and open PRs")
    u.add_argument("--target-repo", "--repository", dest="target_repo", default=None, help="GitHub repo owner/name to open PRs against")
    u.add_argument("--token", default=None, help="GitHub token (or set env GITHUB_TOKEN)")
    u.add_argument("--repo-path", default=None, help="Checkout containing the manifests (default: GITHUB_WORKSPACE or .)")
    u.add_argument("--dry-run", action="store_true", help="Only report the updates that would be applied")
    u.add_argument("--preview", "--no-commit", dest="preview", action="store_true", help="Apply updates to files without git or PRs")
    u.add_argument("--release-monitor-token", default=None, help="release-monitoring.org token (or set RELEASE_MONITOR_TOKEN)")
    u.add_argument("--git-author-name", default=None, help="Commit author name (default: melange-updater)")
    u.add_argument("--git-author-email", default=None, help="Commit author email (default: noreply@example.com)")
    u.add_argument("--github-labels", default=None, help="Comma separated labels to add to created PRs")

    u.set_defaults(func=update_cmd)
    return p


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    try:
        return int(args.func(args))
    except CLIError as e:
        logger.error(redact_secrets(str(e)))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
