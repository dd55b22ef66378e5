import subprocess
from pathlib import Path

import pytest

from flowhooks.git import GitError, GitWorkspace


def _git(repo: Path, *args: str) -> None:
    subprocess.run(
        ["git", "-C", str(repo), "-c", "user.email=dev@example.com", "-c", "user.name=Dev", *args],
        check=True,
        capture_output=True,
    )


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init")
    _git(repo, "commit", "--allow-empty", "-m", "init")
    _git(repo, "checkout", "-b", "feature")
    return repo


def test_current_branch_and_detached_head(git_repo: Path) -> None:
    git = GitWorkspace()

    assert git.current_branch(git_repo) == "feature"

    _git(git_repo, "checkout", "--detach")
    assert git.current_branch(git_repo) is None


def test_status_porcelain_lists_untracked_files(git_repo: Path) -> None:
    git = GitWorkspace()
    assert git.status_porcelain(git_repo) == []

    (git_repo / "notes.txt").write_text("hello\n")

    assert git.status_porcelain(git_repo) == ["?? notes.txt"]


def test_list_worktrees_reports_path_and_branch(git_repo: Path) -> None:
    worktrees = GitWorkspace().list_worktrees(git_repo)

    assert len(worktrees) == 1
    assert Path(str(worktrees[0]["path"])).resolve() == git_repo.resolve()
    assert worktrees[0]["branch"] == "feature"


def test_missing_git_binary_raises_git_error(tmp_path: Path) -> None:
    with pytest.raises(GitError):
        GitWorkspace(git_bin="definitely-not-git").status_porcelain(tmp_path)
