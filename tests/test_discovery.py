from __future__ import annotations

import pytest

from melange_updater import commits, discovery
from melange_updater.commits import Provenance
from melange_updater.discovery import decide, find_candidate
from melange_updater.git import GitError
from melange_updater.manifest import load_manifest
from melange_updater.providers import ReleaseMonitorError

from tests.fakes import FakeGitHub, FakeReleaseMonitor

RELEASE_MONITOR = """\
package:
  name: demo
  version: 1.0.0
  epoch: 1
update:
  enabled: {enabled}
  manual: {manual}
  release_monitor:
    identifier: 4242
pipeline:
  - uses: git-checkout
    with:
      repository: https://github.com/owner/demo
      branch: main
"""

GITHUB = """\
package:
  name: ghpkg
  version: 1.0.0
update:
  github:
    identifier: owner/ghpkg
    strip-prefix: v
"""

GIT = """\
package:
  name: gitpkg
  version: 1.0.0
update:
  git:
    tag-filter-prefix: v
pipeline:
  - uses: git-checkout
    with:
      repository: https://example.com/gitpkg.git
      branch: stable
"""


def _manifest(write_manifest, text: str, **fmt: str):
    manifest = load_manifest(write_manifest(text.format(**fmt) if fmt else text))
    assert manifest is not None
    return manifest


def test_release_monitor_decision_pins_branch_head(write_manifest, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(commits, "resolve_branch_head", lambda url, branch: f"head-of-{branch}")
    manifest = _manifest(write_manifest, RELEASE_MONITOR, enabled="true", manual="false")
    rm = FakeReleaseMonitor("1.2.0")

    decision = decide(manifest, github=FakeGitHub(), release_monitor=rm)

    assert decision is not None
    assert decision.name == "demo"
    assert decision.from_version == "1.0.0"
    assert decision.to_version == "1.2.0"
    assert decision.commit == "head-of-main"
    assert decision.manual is False
    assert rm.calls == [("4242", "", "")]


def test_disabled_manifest_is_skipped(write_manifest) -> None:
    manifest = _manifest(write_manifest, RELEASE_MONITOR, enabled="false", manual="false")
    rm = FakeReleaseMonitor("1.2.0")

    assert decide(manifest, github=FakeGitHub(), release_monitor=rm) is None
    assert rm.calls == []


def test_manual_manifest_skips_commit_resolution(write_manifest, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(commits, "resolve_branch_head", lambda url, branch: pytest.fail("should not resolve"))
    manifest = _manifest(write_manifest, RELEASE_MONITOR, enabled="true", manual="true")

    decision = decide(manifest, github=FakeGitHub(), release_monitor=FakeReleaseMonitor("2.0.0"))

    assert decision is not None
    assert decision.manual is True
    assert decision.commit == ""


def test_prerelease_is_ignored(write_manifest) -> None:
    manifest = _manifest(write_manifest, RELEASE_MONITOR, enabled="true", manual="false")

    assert decide(manifest, github=FakeGitHub(), release_monitor=FakeReleaseMonitor("2.0.0-beta1")) is None


def test_same_version_is_not_an_update(write_manifest) -> None:
    manifest = _manifest(write_manifest, RELEASE_MONITOR, enabled="true", manual="false")

    assert decide(manifest, github=FakeGitHub(), release_monitor=FakeReleaseMonitor("1.0.0")) is None


def test_provider_error_propagates(write_manifest) -> None:
    manifest = _manifest(write_manifest, RELEASE_MONITOR, enabled="true", manual="false")

    def boom(identifier):
        raise ReleaseMonitorError("Non-OK HTTP 404")

    with pytest.raises(ReleaseMonitorError):
        decide(manifest, github=FakeGitHub(), release_monitor=FakeReleaseMonitor(boom))


def test_github_candidate_and_tag_pin(write_manifest) -> None:
    manifest = _manifest(write_manifest, GITHUB)
    gh = FakeGitHub(
        list_releases=[{"tag_name": "v1.4.0", "prerelease": False}],
        get_tag_ref={"sha": "abc", "type": "commit"},
    )

    decision = decide(manifest, github=gh, release_monitor=FakeReleaseMonitor())

    assert decision is not None
    assert decision.to_version == "1.4.0"
    assert decision.commit == "abc"


def test_git_candidate(write_manifest, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(discovery, "latest_git_tag", lambda url, prefix="", contains="": "v1.1.0")
    manifest = _manifest(write_manifest, GIT)

    candidate = find_candidate(manifest, github=FakeGitHub(), release_monitor=FakeReleaseMonitor())

    assert candidate is not None
    assert candidate.provenance is Provenance.GIT
    assert candidate.tag == "v1.1.0"
    assert candidate.repo_url == "https://example.com/gitpkg.git"
    assert candidate.branch == "stable"


def test_git_listing_failure_yields_no_candidate(write_manifest, monkeypatch: pytest.MonkeyPatch) -> None:
    def fail(url, prefix="", contains=""):
        raise GitError("Command failed: git ls-remote")

    monkeypatch.setattr(discovery, "latest_git_tag", fail)
    manifest = _manifest(write_manifest, GIT)

    assert decide(manifest, github=FakeGitHub(), release_monitor=FakeReleaseMonitor()) is None


def test_decision_carries_package_key(write_manifest) -> None:
    text = RELEASE_MONITOR.format(enabled="true", manual="true").replace("package:", "Package:", 1)
    manifest = _manifest(write_manifest, text)

    decision = decide(manifest, github=FakeGitHub(), release_monitor=FakeReleaseMonitor("1.1.0"))

    assert decision is not None
    assert decision.package_key == "Package"
    assert "package_key" not in decision.as_dict()
