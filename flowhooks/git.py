"""Read-only git inspection used by the built-in hooks."""

from __future__ import annotations

import subprocess
from pathlib import Path


class GitError(RuntimeError):
    pass


class GitWorkspace:
    def __init__(self, git_bin: str = "git") -> None:
        self.git_bin = git_bin

    def _run(self, path: str | Path, *args: str) -> str:
        try:
            proc = subprocess.run(
                [self.git_bin, "-C", str(path), *args],
                text=True,
                capture_output=True,
                check=False,
            )
        except OSError as exc:
            raise GitError(f"Could not run {self.git_bin}: {exc}") from exc
        if proc.returncode != 0:
            raise GitError(proc.stderr.strip() or f"git {' '.join(args)} failed in {path}")
        return proc.stdout

    def status_porcelain(self, path: str | Path) -> list[str]:
        return [line for line in self._run(path, "status", "--porcelain").splitlines() if line.strip()]

    def current_branch(self, path: str | Path) -> str | None:
        branch = self._run(path, "rev-parse", "--abbrev-ref", "HEAD").strip()
        return None if branch == "HEAD" else branch

    def list_worktrees(self, path: str | Path) -> list[dict[str, str | None]]:
        """Parse ``git worktree list --porcelain`` into ``{"path", "branch"}`` records."""
        worktrees: list[dict[str, str | None]] = []
        current: dict[str, str | None] | None = None
        for line in self._run(path, "worktree", "list", "--porcelain").splitlines():
            if line.startswith("worktree "):
                current = {"path": line[len("worktree ") :], "branch": None}
                worktrees.append(current)
            elif line.startswith("branch ") and current is not None:
                current["branch"] = line[len("branch ") :].removeprefix("refs/heads/")
        return worktrees
