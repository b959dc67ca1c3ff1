from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any, Callable

import pytest


@pytest.fixture
def write_manifest(tmp_path: Path) -> Callable[..., Path]:
    def _write(text: str, name: str = "pkg.yaml") -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def fake_git(monkeypatch: pytest.MonkeyPatch) -> Callable[[Callable[[list[str]], str]], list[list[str]]]:
    """
    Replace subprocess.run inside melange_updater.git. The handler maps the
    argument list to stdout, or raises CalledProcessError to simulate failure.
    """

    def _install(handler: Callable[[list[str]], str]) -> list[list[str]]:
        seen: list[list[str]] = []

        def fake_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            seen.append(list(cmd))
            return subprocess.CompletedProcess(cmd, 0, stdout=handler(list(cmd)), stderr="")

        monkeypatch.setattr("melange_updater.git.subprocess.run", fake_run)
        return seen

    return _install
