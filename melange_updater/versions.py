"""
versions.py

Responsibility: Pure version-string handling used by the update decision.

- `transform`: normalize a raw upstream version (separators, affixes,
  user rewrite rules, semver coercion)
- `should_ignore`: reject pre-release noise by regex or glob pattern
- `is_newer`: decide whether a candidate supersedes the recorded version

Nothing here touches the network or the filesystem.
"""

from __future__ import annotations

import re

import semver
from loguru import logger

from melange_updater.manifest import AffixRules, TransformRule, UpdatePolicy

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    "*alpha*",
    "*rc*",
    "*beta*",
    "*pre*",
    "*preview*",
    "*dev*",
    "*nightly*",
    "*snapshot*",
    "*eap*",
    "*canary*",
)

_COERCE_RE = re.compile(r"(?<!\d)(\d{1,16})(?:\.(\d{1,16}))?(?:\.(\d{1,16}))?(?!\d)")
_JS_GROUP_RE = re.compile(r"\$(\d+)")


def is_semver(value: str) -> bool:
    return bool(value) and semver.Version.is_valid(value)


def coerce(value: str) -> str | None:
    """
    Extract the first `major[.minor[.patch]]` run from value as `X.Y.Z`.
    Returns None when no digits are present.
    """
    m = _COERCE_RE.search(value)
    if m is None:
        return None
    major, minor, patch = (int(part or 0) for part in m.groups())
    return f"{major}.{minor}.{patch}"


def _strip_affixes(rules: AffixRules | None, value: str) -> str:
    if rules is None:
        return value
    out = value
    if rules.strip_prefix and out.startswith(rules.strip_prefix):
        out = out[len(rules.strip_prefix) :]
    if rules.strip_suffix and out.endswith(rules.strip_suffix):
        out = out[: -len(rules.strip_suffix)]
    return out


def _apply_rules(rules: list[TransformRule], value: str) -> str:
    out = value
    for rule in rules:
        if not rule.match or rule.replace is None:
            continue
        # `$1` style references are accepted alongside Python's `\1`.
        replacement = _JS_GROUP_RE.sub(r"\\g<\1>", rule.replace)
        try:
            out = re.sub(rule.match, replacement, out, count=1)
        except re.error as e:
            logger.warning(f"Skipping version transform {rule.match!r}: {e}")
            continue
    return out


def transform(policy: UpdatePolicy | None, raw: str) -> str:
    """
    Normalize a raw provider version into a comparable string.

    Order: separator -> affix stripping (release_monitor, github, git) ->
    rewrite rules -> semver coercion. Empty input comes back unchanged.
    """
    if not raw:
        return raw
    v = raw
    if policy is None:
        policy = UpdatePolicy()

    if policy.version_separator:
        v = v.replace(policy.version_separator, ".")

    for rules in (policy.release_monitor, policy.github, policy.git):
        v = _strip_affixes(rules, v)

    v = _apply_rules(policy.version_transform, v)

    if not is_semver(v):
        coerced = coerce(v)
        if coerced is not None:
            v = coerced
    return v


def glob_to_regex(pattern: str) -> str:
    return ".*".join(re.escape(part) for part in pattern.split("*"))


def _compile_pattern(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        pass
    try:
        return re.compile(glob_to_regex(pattern), re.IGNORECASE)
    except re.error:
        return None


def ignore_patterns(policy: UpdatePolicy | None) -> list[str]:
    custom = list(policy.ignore_regex_patterns) if policy is not None else []
    return [*DEFAULT_IGNORE_PATTERNS, *custom]


def should_ignore(policy: UpdatePolicy | None, version: str) -> bool:
    for pattern in ignore_patterns(policy):
        compiled = _compile_pattern(pattern)
        if compiled is not None and compiled.search(version):
            return True
    return False


def is_newer(candidate: str, current: str) -> bool:
    """
    Strict semver ordering when both sides parse; otherwise any difference
    counts as newer so date- or hash-based schemes still update.
    """
    if not candidate:
        return False
    if not current:
        return True
    if is_semver(candidate) and is_semver(current):
        return semver.Version.parse(candidate) > semver.Version.parse(current)
    return candidate != current
