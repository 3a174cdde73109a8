"""Tests for FileDiscoveryService and the breadth-first file search."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.infra.cancellation import CancellationToken
from src.workspace.discovery import FileDiscoveryService, bfs_file_search, find_vcs_root


def _git_repo(path):
    path.mkdir(parents=True, exist_ok=True)
    (path / ".git").mkdir()
    return path.resolve()


class TestFindVcsRoot:
    def test_finds_nearest_marker(self, tmp_path) -> None:
        root = _git_repo(tmp_path / "repo")
        deep = root / "a" / "b"
        deep.mkdir(parents=True)
        assert find_vcs_root(deep) == root


class TestFileDiscoveryService:
    def test_gitignore_honoured_only_in_git_repo(self, tmp_path) -> None:
        repo = _git_repo(tmp_path / "repo")
        (repo / ".gitignore").write_text("*.log\n", encoding="utf-8")
        service = FileDiscoveryService(repo)
        assert service.is_git_repository
        assert service.is_git_ignored(repo / "debug.log")
        assert not service.is_tool_ignored(repo / "debug.log")

    def test_tool_ignore_file_honoured(self, tmp_path) -> None:
        root = (tmp_path / "proj").resolve()
        root.mkdir()
        (root / ".toolsmithignore").write_text("secrets/\n", encoding="utf-8")
        service = FileDiscoveryService(root)
        assert service.is_tool_ignored(root / "secrets" / "key.pem")
        assert service.tool_ignore_patterns() == ["secrets/"]

    def test_should_ignore_respects_flags(self, tmp_path) -> None:
        repo = _git_repo(tmp_path / "repo")
        (repo / ".gitignore").write_text("*.log\n", encoding="utf-8")
        service = FileDiscoveryService(repo)
        assert service.should_ignore(repo / "a.log")
        assert not service.should_ignore(repo / "a.log", respect_git_ignore=False)

    def test_paths_outside_root_are_not_ignored(self, tmp_path) -> None:
        repo = _git_repo(tmp_path / "repo")
        (repo / ".gitignore").write_text("*\n", encoding="utf-8")
        service = FileDiscoveryService(repo)
        assert service.relative(tmp_path / "elsewhere.txt") is None
        assert not service.should_ignore(tmp_path / "elsewhere.txt")

    def test_filter_files(self, tmp_path) -> None:
        repo = _git_repo(tmp_path / "repo")
        (repo / ".gitignore").write_text("*.log\n", encoding="utf-8")
        service = FileDiscoveryService(repo)
        kept = service.filter_files([repo / "a.py", repo / "b.log"])
        assert kept == [repo / "a.py"]

    def test_relative_root_rejected(self) -> None:
        with pytest.raises(ValueError):
            FileDiscoveryService(Path("relative"))


class TestBfsFileSearch:
    def test_finds_matches_breadth_first(self, tmp_path) -> None:
        root = tmp_path.resolve()
        (root / "a" / "b").mkdir(parents=True)
        (root / "AGENT.md").write_text("top", encoding="utf-8")
        (root / "a" / "b" / "AGENT.md").write_text("deep", encoding="utf-8")
        (root / "a" / "other.md").write_text("x", encoding="utf-8")
        found = bfs_file_search(root, "AGENT.md", max_dirs=50)
        assert found == [root / "AGENT.md", root / "a" / "b" / "AGENT.md"]

    def test_max_dirs_bounds_the_scan(self, tmp_path) -> None:
        root = tmp_path.resolve()
        (root / "a" / "b").mkdir(parents=True)
        (root / "a" / "b" / "AGENT.md").write_text("deep", encoding="utf-8")
        assert bfs_file_search(root, "AGENT.md", max_dirs=2) == []

    def test_ignored_directories_are_pruned(self, tmp_path) -> None:
        repo = _git_repo(tmp_path / "repo")
        (repo / ".gitignore").write_text("vendor/\n", encoding="utf-8")
        (repo / "vendor").mkdir()
        (repo / "vendor" / "AGENT.md").write_text("x", encoding="utf-8")
        service = FileDiscoveryService(repo)
        found = bfs_file_search(
            repo, "AGENT.md", max_dirs=50, file_service=service, respect_git_ignore=True
        )
        assert found == []

    def test_skip_dirs(self, tmp_path) -> None:
        root = tmp_path.resolve()
        (root / "node_modules").mkdir()
        (root / "node_modules" / "AGENT.md").write_text("x", encoding="utf-8")
        found = bfs_file_search(root, "AGENT.md", max_dirs=50, skip_dirs=("node_modules",))
        assert found == []

    def test_cancelled_token_stops_scan(self, tmp_path) -> None:
        root = tmp_path.resolve()
        (root / "AGENT.md").write_text("x", encoding="utf-8")
        token = CancellationToken()
        token.cancel()
        assert bfs_file_search(root, "AGENT.md", max_dirs=50, token=token) == []
