"""
report.py

Responsibility: Render the markdown the updater publishes.

- pull request bodies
- failure issue bodies
- the GitHub Actions step summary (`GITHUB_STEP_SUMMARY`)

This module does NOT know about git or the GitHub API.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jinja2 import Environment, StrictUndefined
from loguru import logger

from melange_updater.discovery import PackageError, UpdateDecision

SUMMARY_MARKER = "<!-- melange-updater-summary -->"

PR_TITLE = "Automated update for {name}"
ISSUE_TITLE = "melange updater failure for {name}"

PR_BODY = """\
This PR updates {{ d.name }}: {{ d.from_version }} -> {{ d.to_version }}
{%- if d.commit %}

Pinned `expected-commit` to `{{ d.commit }}`.
{%- endif %}
{%- if labels %}

Labels: {{ labels | join(", ") }}
{%- endif %}
"""

ISSUE_BODY = """\
melange updater encountered an error {% if phase %}during {{ phase }} {% endif %}for package **{{ name }}**.

Error: {{ message }}
"""

SUMMARY = """\
{{ marker }}
## Melange updater

Mode: {{ mode }}

{% if decisions -%}
| Package | From | To | Manual | Commit |
| --- | --- | --- | --- | --- |
{% for d in decisions -%}
| {{ d.name }} | {{ d.from_version }} | {{ d.to_version }} | {{ "yes" if d.manual else "no" }} | {{ d.commit }} |
{% endfor %}
{%- else -%}
No updates detected.
{% endif %}
{%- if created_prs %}
### Created PRs

{% for name, url in created_prs -%}
- {{ name }}: {{ url }}
{% endfor %}
{%- endif %}
{%- if manual %}
### Manual updates

{% for d in manual -%}
- {{ d.name }}: {{ d.from_version }} -> {{ d.to_version }}
{% endfor %}
{%- endif %}
{%- if failed %}
### Failures

{% for name in failed -%}
- {{ name }}
{% endfor %}
{%- endif %}
{%- if errors %}
### Errors

{% for e in errors -%}
- {{ e.name }} ({{ e.phase }}): {{ e.message }}
{% endfor %}
{%- endif %}
"""

_env = Environment(
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


@dataclass
class RunReport:
    """Everything a run produced, accumulated across packages."""

    mode: str = ""
    decisions: list[UpdateDecision] = field(default_factory=list)
    created_prs: list[tuple[str, str]] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: list[PackageError] = field(default_factory=list)

    @property
    def manual(self) -> list[UpdateDecision]:
        return [d for d in self.decisions if d.manual]


def _render(source: str, **context: Any) -> str:
    return _env.from_string(source).render(**context)


def render_pr_body(decision: UpdateDecision, labels: list[str] | None = None) -> str:
    return _render(PR_BODY, d=decision, labels=labels or [])


def render_issue_body(name: str, message: str, phase: str = "") -> str:
    return _render(ISSUE_BODY, name=name, message=message, phase=phase)


def render_summary(report: RunReport) -> str:
    return _render(
        SUMMARY,
        marker=SUMMARY_MARKER,
        mode=report.mode,
        decisions=report.decisions,
        created_prs=report.created_prs,
        manual=report.manual,
        failed=report.failed,
        errors=report.errors,
    )


def write_summary(report: RunReport, summary_path: str | Path | None = None) -> bool:
    """
    Append the run summary to the step summary file once.

    Skipped outside GitHub Actions (no GITHUB_STEP_SUMMARY) and when the file
    already carries a summary from this tool.
    """
    target = summary_path or os.environ.get("GITHUB_STEP_SUMMARY")
    if not target:
        return False
    path = Path(target)
    if path.exists():
        try:
            if SUMMARY_MARKER in path.read_text(encoding="utf-8"):
                return False
        except OSError as e:
            logger.warning(f"Unable to read step summary {path}: {e}")
    with open(path, "a", encoding="utf-8") as f:
        f.write(render_summary(report))
    return True
