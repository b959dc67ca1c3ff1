"""
melange_updater package

This package implements an automatic version bumper for melange package manifests.

Key responsibilities are split across modules:
- `manifest.py`: discover and parse manifests into a typed model
- `providers.py`: look up the newest upstream version (release-monitor, GitHub, git tags)
- `versions.py`: transform, ignore-filter and compare version strings
- `commits.py`: resolve the commit to pin as `expected-commit`
- `editor.py`: rewrite manifest fields in place without reformatting the file
- `github_client.py`: isolated GitHub REST API interactions (releases, refs, PRs, issues)
- `git.py`: local `git` invocations
- `report.py`: PR/issue bodies and the step summary
- `cli.py`: CLI entrypoint and orchestration (discover -> decide -> apply -> PR)
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
