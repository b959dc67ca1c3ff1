"""
manifest.py

Responsibility: Discover melange package manifests and parse them into a typed model.

Rules:
- Only `*.yaml` files with both a package block and an `update` block are candidates.
- Legacy `Package:` capitalization is normalized once here; callers never branch on it.
- Hyphenated keys in the `update` block are normalized to underscores.
- Decimal-looking scalars (e.g. `version: 1.10`) stay strings.

The editor and the update pipeline treat the parsed result as the single source of truth.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

PACKAGE_KEYS = ("package", "Package")
GIT_CHECKOUT = "git-checkout"
_SKIP_DIRS = {".git", "node_modules"}


class ManifestError(ValueError):
    pass


class ManifestLoader(yaml.SafeLoader):
    """SafeLoader that never turns version-like scalars into floats."""


ManifestLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:float"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


@dataclass(frozen=True)
class PackageIdentity:
    name: str
    version: str = ""
    epoch: int | None = None
    key: str = "package"


@dataclass(frozen=True)
class AffixRules:
    strip_prefix: str = ""
    strip_suffix: str = ""


@dataclass(frozen=True)
class ReleaseMonitorPolicy(AffixRules):
    identifier: str = ""
    version_filter_prefix: str = ""
    version_filter_contains: str = ""


@dataclass(frozen=True)
class GitHubPolicy(AffixRules):
    identifier: str = ""
    use_tag: bool = False
    tag_filter_prefix: str = ""
    tag_filter_contains: str = ""


@dataclass(frozen=True)
class GitPolicy(AffixRules):
    repository: str = ""
    branch: str = ""
    tag_filter_prefix: str = ""
    tag_filter_contains: str = ""


@dataclass(frozen=True)
class TransformRule:
    match: str
    replace: str | None


@dataclass(frozen=True)
class UpdatePolicy:
    """The `update:` block of a manifest."""

    enabled: bool = True
    manual: bool = False
    version_separator: str = ""
    version_transform: list[TransformRule] = field(default_factory=list)
    ignore_regex_patterns: list[str] = field(default_factory=list)
    release_monitor: ReleaseMonitorPolicy | None = None
    github: GitHubPolicy | None = None
    git: GitPolicy | None = None


@dataclass
class Manifest:
    path: Path
    doc: dict[str, Any]
    package: PackageIdentity
    policy: UpdatePolicy

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def pipeline(self) -> list[Any]:
        steps = self.doc.get("pipeline")
        return steps if isinstance(steps, list) else []


def normalize_keys(obj: Any) -> Any:
    """Recursively replace `-` with `_` in mapping keys."""
    if isinstance(obj, list):
        return [normalize_keys(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k).replace("-", "_"): normalize_keys(v) for k, v in obj.items()}
    return obj


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _flag(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _section(raw: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ManifestError(f"`update.{key}` must be a mapping when provided.")
    return value


def _tag_contains(section: dict[str, Any]) -> str:
    return _text(section.get("tag_filter_contains")) or _text(section.get("tag_filter"))


def parse_update_policy(raw: Any) -> UpdatePolicy:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ManifestError("`update` must be a mapping.")
    raw = normalize_keys(raw)

    rules: list[TransformRule] = []
    for item in raw.get("version_transform") or []:
        if not isinstance(item, dict):
            continue
        replace = item.get("replace")
        rules.append(TransformRule(match=_text(item.get("match")), replace=None if replace is None else str(replace)))

    patterns = [str(p) for p in (raw.get("ignore_regex_patterns") or []) if p is not None]

    rm = _section(raw, "release_monitor")
    gh = _section(raw, "github")
    git = _section(raw, "git")

    return UpdatePolicy(
        enabled=_flag(raw.get("enabled"), True),
        manual=_flag(raw.get("manual"), False),
        version_separator=_text(raw.get("version_separator")),
        version_transform=rules,
        ignore_regex_patterns=patterns,
        release_monitor=None
        if rm is None
        else ReleaseMonitorPolicy(
            identifier=_text(rm.get("identifier")),
            version_filter_prefix=_text(rm.get("version_filter_prefix")),
            version_filter_contains=_text(rm.get("version_filter_contains")),
            strip_prefix=_text(rm.get("strip_prefix")),
            strip_suffix=_text(rm.get("strip_suffix")),
        ),
        github=None
        if gh is None
        else GitHubPolicy(
            identifier=_text(gh.get("identifier")),
            use_tag=_flag(gh.get("use_tag"), False),
            tag_filter_prefix=_text(gh.get("tag_filter_prefix")),
            tag_filter_contains=_tag_contains(gh),
            strip_prefix=_text(gh.get("strip_prefix")),
            strip_suffix=_text(gh.get("strip_suffix")),
        ),
        git=None
        if git is None
        else GitPolicy(
            repository=_text(git.get("repository")),
            branch=_text(git.get("branch")),
            tag_filter_prefix=_text(git.get("tag_filter_prefix")),
            tag_filter_contains=_tag_contains(git),
            strip_prefix=_text(git.get("strip_prefix")),
            strip_suffix=_text(git.get("strip_suffix")),
        ),
    )


def parse_package_identity(doc: dict[str, Any], fallback_name: str) -> PackageIdentity | None:
    for key in PACKAGE_KEYS:
        block = doc.get(key)
        if isinstance(block, dict):
            epoch = block.get("epoch")
            try:
                epoch_value = None if epoch is None else int(epoch)
            except (TypeError, ValueError):
                epoch_value = None
            return PackageIdentity(
                name=_text(block.get("name")) or fallback_name,
                version=_text(block.get("version")),
                epoch=epoch_value,
                key=key,
            )
    return None


def load_manifest(path: str | Path) -> Manifest | None:
    """
    Parse one manifest file. Returns None when the file is not an updatable
    melange package (no package block or no `update` block).
    """
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    doc = yaml.load(text, Loader=ManifestLoader)
    if not isinstance(doc, dict) or "update" not in doc:
        return None
    package = parse_package_identity(doc, p.name)
    if package is None:
        return None
    return Manifest(path=p, doc=doc, package=package, policy=parse_update_policy(doc.get("update")))


def _iter_yaml_files(repo_path: Path) -> list[Path]:
    files = [
        p
        for p in repo_path.rglob("*.yaml")
        if p.is_file() and not _SKIP_DIRS.intersection(p.relative_to(repo_path).parts)
    ]
    files.sort(key=lambda p: p.relative_to(repo_path).as_posix())
    return files


def find_manifests(repo_path: str | Path) -> dict[str, Manifest]:
    """
    Return updatable manifests under repo_path keyed by package name.
    Files that fail to parse are skipped.
    """
    root = Path(repo_path)
    manifests: dict[str, Manifest] = {}
    for path in _iter_yaml_files(root):
        try:
            manifest = load_manifest(path)
        except (OSError, UnicodeDecodeError, yaml.YAMLError, ManifestError) as e:
            logger.debug(f"Skipping {path}: {e}")
            continue
        if manifest is not None:
            manifests[manifest.name] = manifest
    return manifests


def _checkout_with(step: Any) -> dict[str, Any] | None:
    if not isinstance(step, dict) or step.get("uses") != GIT_CHECKOUT:
        return None
    with_block = step.get("with")
    return with_block if isinstance(with_block, dict) else None


def pipeline_repository(manifest: Manifest) -> str:
    for step in manifest.pipeline:
        with_block = _checkout_with(step)
        if with_block and with_block.get("repository"):
            return str(with_block["repository"])
    return ""


def pipeline_branch(manifest: Manifest) -> str:
    for step in manifest.pipeline:
        with_block = _checkout_with(step)
        if with_block and with_block.get("branch"):
            return str(with_block["branch"])
    return ""
