"""Unit tests for exclusion rules and the local directory scanner."""

import os
from pathlib import Path

import pytest

from pygitsync.config import SyncConfiguration
from pygitsync.models import PathFailure, TreeSnapshot
from pygitsync.sync.scanner import DirectoryScanner, ExclusionRules, ScanReport
from pygitsync.utils import calculate_git_blob_hash


def make_tree(root: Path, files: dict[str, bytes]) -> None:
    for relative_path, content in files.items():
        target = root / relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)


class TestExclusionRules:
    """Tests for ExclusionRules."""

    def test_folder_prefix(self):
        """Folder rules exclude everything below the folder."""
        rules = ExclusionRules([".trash"], [])

        assert rules.is_excluded(".trash/x.md")
        assert rules.is_excluded(".trash/a/b.md")
        assert not rules.is_excluded("notes/y.md")

    def test_folder_prefix_respects_segments(self):
        """A folder rule does not match a sibling sharing its prefix."""
        rules = ExclusionRules([".trash"], [])
        assert not rules.is_excluded(".trashcan/x.md")

    def test_nested_folder_rule(self):
        rules = ExclusionRules([".obsidian/plugins"], [])

        assert rules.is_excluded(".obsidian/plugins/dataview/main.js")
        assert not rules.is_excluded(".obsidian/app.json")

    def test_folder_rules_are_normalized(self):
        """Leading, trailing and back slashes in folder rules are ignored."""
        rules = ExclusionRules(["/.trash/", "archive\\old", "", "  "], [])

        assert rules.is_excluded(".trash/x.md")
        assert rules.is_excluded("archive/old/x.md")
        assert not rules.is_excluded("archive/new/x.md")

    def test_file_patterns_match_base_name(self):
        """File rules apply to the base name anywhere in the tree."""
        rules = ExclusionRules([], [".DS_Store", "*.tmp"])

        assert rules.is_excluded(".DS_Store")
        assert rules.is_excluded("deep/dir/.DS_Store")
        assert rules.is_excluded("notes/draft.tmp")
        assert not rules.is_excluded("notes/draft.md")

    def test_file_patterns_are_case_sensitive(self):
        rules = ExclusionRules([], [".DS_Store"])
        assert not rules.is_excluded("notes/.ds_store")

    def test_predicate_form(self):
        """Calling the rules returns True for included paths."""
        rules = ExclusionRules([".trash"], [])

        assert rules("notes/y.md") is True
        assert rules(".trash/x.md") is False

    def test_from_config(self):
        config = SyncConfiguration(
            excluded_folders=("private",), excluded_files=("*.bak",)
        )
        rules = ExclusionRules.from_config(config)

        assert rules.is_excluded("private/a.md")
        assert rules.is_excluded("a.bak")


class TestDirectoryScanner:
    """Tests for DirectoryScanner."""

    @pytest.fixture
    def scan_config(self):
        return SyncConfiguration(
            excluded_folders=(".trash",), excluded_files=("*.tmp",)
        )

    @pytest.mark.asyncio
    async def test_scan_builds_snapshot(self, tmp_path, scan_config):
        """Scanned entries carry blob hashes and sizes with slash paths."""
        make_tree(tmp_path, {"a.md": b"alpha", "sub/dir/b.md": b"beta"})

        report = await DirectoryScanner(tmp_path).scan(scan_config)
        snapshot = report.snapshot

        assert sorted(snapshot) == ["a.md", "sub/dir/b.md"]
        assert snapshot["a.md"].content_hash == calculate_git_blob_hash(b"alpha")
        assert snapshot["sub/dir/b.md"].size == 4
        assert snapshot.head_sha is None
        assert report.skipped == []

    @pytest.mark.asyncio
    async def test_scan_applies_exclusions(self, tmp_path, scan_config):
        """Excluded folders and files are left out of the snapshot."""
        make_tree(
            tmp_path,
            {".trash/x.md": b"x", "notes/y.md": b"y", "notes/z.tmp": b"z"},
        )

        report = await DirectoryScanner(tmp_path).scan(scan_config)

        assert list(report.snapshot) == ["notes/y.md"]

    @pytest.mark.asyncio
    async def test_scan_flags_binary_content(self, tmp_path, scan_config):
        make_tree(tmp_path, {"image.png": b"\x89PNG\r\n\x1a\n\x00\x00", "t.md": b"t"})

        snapshot = (await DirectoryScanner(tmp_path).scan(scan_config)).snapshot

        assert snapshot["image.png"].is_binary
        assert not snapshot["t.md"].is_binary

    @pytest.mark.asyncio
    async def test_empty_directories_are_not_entries(self, tmp_path, scan_config):
        (tmp_path / "empty" / "nested").mkdir(parents=True)

        report = await DirectoryScanner(tmp_path).scan(scan_config)

        assert len(report.snapshot) == 0

    @pytest.mark.asyncio
    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    async def test_symlinks_are_skipped_and_reported(self, tmp_path, scan_config):
        """Symlinks are never followed."""
        make_tree(tmp_path, {"real.md": b"real"})
        outside = tmp_path.parent / "outside"
        outside.mkdir(exist_ok=True)
        (outside / "secret.md").write_bytes(b"secret")
        os.symlink(tmp_path / "real.md", tmp_path / "link.md")
        os.symlink(outside, tmp_path / "linked_dir")

        report = await DirectoryScanner(tmp_path).scan(scan_config)

        assert list(report.snapshot) == ["real.md"]
        assert sorted(s.path for s in report.skipped) == ["link.md", "linked_dir"]

    @pytest.mark.asyncio
    async def test_scan_missing_root_raises(self, tmp_path, scan_config):
        with pytest.raises(NotADirectoryError):
            await DirectoryScanner(tmp_path / "missing").scan(scan_config)

    @pytest.mark.asyncio
    async def test_scan_with_single_worker(self, tmp_path, scan_config):
        """Scanning works with the lowest concurrency."""
        make_tree(tmp_path, {f"n{i}.md": str(i).encode() for i in range(10)})

        report = await DirectoryScanner(tmp_path, max_workers=0).scan(scan_config)

        assert len(report.snapshot) == 10


class TestScanReport:
    """Tests for ScanReport.is_skipped."""

    def test_skipped_file_and_folder(self):
        report = ScanReport(
            TreeSnapshot([]),
            skipped=[
                PathFailure("a.md", "unreadable"),
                PathFailure("linked", "symlink"),
            ],
        )

        assert report.is_skipped("a.md")
        assert report.is_skipped("linked/x.md")
        assert not report.is_skipped("linkedin/x.md")
        assert not report.is_skipped("b.md")

    def test_unreadable_root_covers_everything(self):
        report = ScanReport(TreeSnapshot([]), skipped=[PathFailure(".", "unreadable")])
        assert report.is_skipped("notes/a.md")

    def test_nothing_skipped(self):
        assert not ScanReport(TreeSnapshot([])).is_skipped("a.md")
