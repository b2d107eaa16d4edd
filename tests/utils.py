"""Shared helpers for testing."""

from __future__ import annotations

import subprocess
from pathlib import Path

import github_retire as gr


class DummyProcess:
    """Lightweight stand-in for subprocess.CompletedProcess."""

    def __init__(self, stdout: str = "", returncode: int = 0) -> None:
        self.stdout = stdout
        self.returncode = returncode


def make_repo(
    *,
    repo_id: int = 1,
    name: str = "repo",
    owner: str = "acme",
    archived: bool = False,
    private: bool = False,
) -> gr.RepoInfo:
    """Return a RepoInfo instance populated with sensible defaults."""
    return gr.RepoInfo(
        id=repo_id,
        name=name,
        full_name=f"{owner}/{name}",
        description="",
        private=private,
        archived=archived,
        stars=0,
        forks=0,
        open_issues=0,
        created_at="2020-01-01T00:00:00Z",
        updated_at="2020-01-01T00:00:00Z",
        pushed_at=None,
        html_url=f"https://github.com/{owner}/{name}",
    )


def make_settings(tmp_path: Path, **overrides: object) -> gr.Settings:
    """Return Settings rooted in ``tmp_path``."""
    values: dict[str, object] = {
        "organization": "Acme",
        "token": "secret-token",
        "data_dir": tmp_path / "data",
    }
    values.update(overrides)
    return gr.Settings(**values)  # type: ignore[arg-type]


def git(*args: str, cwd: Path) -> str:
    """Run git for test fixtures with a fixed identity."""
    proc = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        check=True,
    )
    return proc.stdout


def commit_file(repo: Path, name: str, content: str, message: str) -> None:
    path = repo / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    git("add", name, cwd=repo)
    git("commit", "-m", message, cwd=repo)


def make_origin(tmp_path: Path) -> Path:
    """Create a non-bare origin with ``main``, ``feature/login`` and a tag."""
    origin = tmp_path / "origin"
    origin.mkdir()
    git("init", "-b", "main", cwd=origin)
    commit_file(origin, "README.md", "hello\n", "initial")
    git("tag", "v1.0", cwd=origin)
    git("branch", "feature/login", cwd=origin)
    git("branch", "develop", cwd=origin)
    return origin
