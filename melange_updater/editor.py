"""
editor.py

Responsibility: Rewrite individual fields of a manifest file in place.

Two strategies sit behind `apply_version` / `apply_pinned_commit`:
- line surgery: locate the field by indentation and rewrite only its value,
  leaving every other byte of the file untouched
- structured rewrite: load with PyYAML, mutate, dump (loses comments and
  formatting, so it only runs when line surgery cannot find the structure)

Callers only learn whether the file changed.
"""

from __future__ import annotations

import re
from pathlib import Path
from functools import partial
from typing import Any, Callable

import yaml
from loguru import logger

from melange_updater.manifest import GIT_CHECKOUT, ManifestLoader

PIN_FIELD = "expected-commit"

_CHECKOUT_RE = re.compile(r"^(\s*)-\s+uses:\s*([\"']?)%s\2\s*(?:#.*)?$" % re.escape(GIT_CHECKOUT))
_WITH_RE = re.compile(r"^(\s*)with:\s*(?:#.*)?$")
_SCALAR_RE = r"^(?P<indent>[ \t]+){key}:(?P<sep>\s*)(?P<value>\"[^\"]*\"|'[^']*'|[^#]*?)(?P<tail>\s+#.*)?\s*$"

Lines = list[tuple[str, str]]


def _split_lines(text: str) -> Lines:
    """Split into (content, line_ending) pairs so endings survive a rewrite."""
    out: Lines = []
    for raw in text.splitlines(keepends=True):
        body = raw.rstrip("\r\n")
        out.append((body, raw[len(body) :]))
    return out


def _join_lines(lines: Lines) -> str:
    return "".join(body + ending for body, ending in lines)


def _newline(lines: Lines) -> str:
    for _body, ending in lines:
        if ending:
            return ending
    return "\n"


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def _is_blank(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def _block_re(key: str) -> re.Pattern[str]:
    return re.compile(r"^%s:\s*(?:#.*)?$" % re.escape(key))


def _scalar_re(key: str) -> re.Pattern[str]:
    return re.compile(_SCALAR_RE.format(key=re.escape(key)))


def _with_value(match: re.Match[str], new_value: str) -> str:
    """Rebuild a `key: value` line keeping indentation, quoting and comment."""
    old = match.group("value")
    if len(old) >= 2 and old[0] == old[-1] and old[0] in "\"'":
        new_value = f"{old[0]}{new_value}{old[0]}"
    sep = match.group("sep") or " "
    line = match.string
    return line[: match.start("sep")] + sep + new_value + (match.group("tail") or "")


def _block_end(lines: Lines, start: int, parent_indent: int) -> int:
    """Index of the first non-blank line after start indented <= parent_indent."""
    for j in range(start + 1, len(lines)):
        body = lines[j][0]
        if _is_blank(body):
            continue
        if _indent_of(body) <= parent_indent:
            return j
    return len(lines)


def _child_indent(lines: Lines, start: int, end: int) -> int | None:
    for j in range(start + 1, end):
        body = lines[j][0]
        if not _is_blank(body):
            return _indent_of(body)
    return None


# -- line surgery -----------------------------------------------------------


def edit_version_lines(text: str, new_version: str, package_key: str = "package") -> str | None:
    """
    Rewrite `version:` (and reset `epoch:` to 0) in the top-level `package_key` block.
    Returns None when the block or the field cannot be located.
    """
    lines = _split_lines(text)
    package_re = _block_re(package_key)
    for i, (body, _ending) in enumerate(lines):
        if not package_re.match(body):
            continue
        end = _block_end(lines, i, 0)
        child = _child_indent(lines, i, end)
        if child is None:
            return None
        version_re, epoch_re = _scalar_re("version"), _scalar_re("epoch")
        found = False
        for j in range(i + 1, end):
            line, ending = lines[j]
            if _is_blank(line) or _indent_of(line) != child:
                continue
            m = version_re.match(line)
            if m:
                lines[j] = (_with_value(m, new_version), ending)
                found = True
                continue
            m = epoch_re.match(line)
            if m and m.group("value").strip("\"'") != "0":
                lines[j] = (_with_value(m, "0"), ending)
        return _join_lines(lines) if found else None
    return None


def edit_pin_lines(text: str, commit: str) -> str | None:
    """
    Set `expected-commit:` inside the `with:` block of the first git-checkout step.
    Inserts the field after `branch:` (or at the end of the block) when absent.
    Returns None when no git-checkout step with a `with:` block exists.
    """
    lines = _split_lines(text)
    pin_re, branch_re = _scalar_re(PIN_FIELD), _scalar_re("branch")
    for i, (body, _ending) in enumerate(lines):
        m = _CHECKOUT_RE.match(body)
        if not m:
            continue
        dash_indent = len(m.group(1))
        step_end = _block_end(lines, i, dash_indent)
        for w in range(i + 1, step_end):
            wm = _WITH_RE.match(lines[w][0])
            if not wm:
                continue
            with_indent = len(wm.group(1))
            with_end = _block_end(lines, w, with_indent)
            child = _child_indent(lines, w, with_end)
            if child is None:
                child = with_indent + 2
            branch_at = None
            last_child = w
            for j in range(w + 1, with_end):
                line, ending = lines[j]
                if _is_blank(line):
                    continue
                last_child = j
                if _indent_of(line) != child:
                    continue
                pm = pin_re.match(line)
                if pm:
                    lines[j] = (_with_value(pm, commit), ending)
                    return _join_lines(lines)
                if branch_re.match(line):
                    branch_at = j
            at = branch_at if branch_at is not None else last_child
            new_line = (" " * child + f"{PIN_FIELD}: {commit}", _newline(lines))
            if not lines[at][1]:
                lines[at] = (lines[at][0], _newline(lines))
                new_line = (new_line[0], "")
            lines.insert(at + 1, new_line)
            return _join_lines(lines)
        return None
    return None


# -- structured rewrite -----------------------------------------------------


def _dump(doc: dict[str, Any]) -> str:
    return yaml.safe_dump(doc, sort_keys=False, default_flow_style=False, allow_unicode=True)


def edit_version_doc(text: str, new_version: str, package_key: str = "package") -> str | None:
    doc = yaml.load(text, Loader=ManifestLoader)
    if not isinstance(doc, dict):
        return None
    block = doc.get(package_key)
    if not isinstance(block, dict) or "version" not in block:
        return None
    block["version"] = new_version
    if "epoch" in block:
        block["epoch"] = 0
    return _dump(doc)


def edit_pin_doc(text: str, commit: str) -> str | None:
    doc = yaml.load(text, Loader=ManifestLoader)
    if not isinstance(doc, dict) or not isinstance(doc.get("pipeline"), list):
        return None
    for step in doc["pipeline"]:
        if isinstance(step, dict) and step.get("uses") == GIT_CHECKOUT:
            with_block = step.get("with")
            if not isinstance(with_block, dict):
                with_block = {}
                step["with"] = with_block
            with_block[PIN_FIELD] = commit
            return _dump(doc)
    return None


Strategy = Callable[[str, str], "str | None"]


def _apply(path: str | Path, value: str, strategies: list[Strategy], what: str) -> bool:
    p = Path(path)
    with open(p, encoding="utf-8", newline="") as f:
        original = f.read()
    for strategy in strategies:
        updated = strategy(original, value)
        if updated is None:
            continue
        if updated == original:
            return False
        with open(p, "w", encoding="utf-8", newline="") as f:
            f.write(updated)
        return True
    logger.warning(f"{p}: could not locate {what}; file left unchanged")
    return False


def apply_version(path: str | Path, new_version: str, package_key: str = "package") -> bool:
    """
    Set the package version (and reset epoch to 0). Returns True when the file changed.

    `package_key` is the spelling recorded on `PackageIdentity.key` at load time.
    """
    strategies = [partial(edit_version_lines, package_key=package_key), partial(edit_version_doc, package_key=package_key)]
    return _apply(path, new_version, strategies, "package version")


def apply_pinned_commit(path: str | Path, commit: str) -> bool:
    """Set `expected-commit` on the git-checkout step. Returns True when the file changed."""
    if not commit:
        return False
    return _apply(path, commit, [edit_pin_lines, edit_pin_doc], "git-checkout step")
