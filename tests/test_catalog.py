import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from cloud_migrator.core_logic.catalog import CatalogBuilder, build_catalog, merge_catalog
from cloud_migrator.models import DirectoryPath, FileEntry
from cloud_migrator.utils import TraversalError
from tests.mocks.mock_ui import RecordingUIManager


def _write(path: Path, size: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    return path


class TestCatalogBuilder(unittest.TestCase):
    def setUp(self):
        self.root = Path(tempfile.mkdtemp())
        self.ui = RecordingUIManager()

    def tearDown(self):
        shutil.rmtree(self.root)

    def test_files_and_dirs_are_collected_recursively(self):
        _write(self.root / "top.txt", 3)
        _write(self.root / "a" / "one.bin", 10)
        _write(self.root / "a" / "deep" / "two.bin", 5)
        (self.root / "empty").mkdir()

        catalog = build_catalog(self.root, self.ui, max_workers=4)

        self.assertEqual(
            {entry.path for entry in catalog.files},
            {self.root / "top.txt", self.root / "a" / "one.bin", self.root / "a" / "deep" / "two.bin"},
        )
        self.assertEqual(
            [d.path for d in catalog.dirs],
            [self.root / "a", self.root / "a" / "deep", self.root / "empty"],
        )
        self.assertEqual(catalog.errors, [])
        self.assertEqual(len(self.ui.named("traversal_start")), 1)
        self.assertEqual(len(self.ui.named("traversal_complete")), 1)

    def test_files_are_ordered_largest_first(self):
        _write(self.root / "b" / "small.bin", 1024)
        _write(self.root / "a" / "big.bin", 10 * 1024)
        _write(self.root / "stub.bin", 0)

        catalog = build_catalog(self.root, self.ui)

        self.assertEqual([entry.name for entry in catalog.files], ["big.bin", "small.bin", "stub.bin"])
        self.assertEqual(catalog.files[0].size, 10 * 1024)
        self.assertTrue(catalog.files[-1].is_stub)

    def test_equal_sizes_are_ordered_by_path(self):
        for name in ("c.txt", "a.txt", "b.txt"):
            _write(self.root / name, 7)

        catalog = build_catalog(self.root, self.ui)

        self.assertEqual([entry.name for entry in catalog.files], ["a.txt", "b.txt", "c.txt"])

    def test_catalog_has_no_duplicate_paths(self):
        for i in range(20):
            _write(self.root / f"d{i % 4}" / f"sub{i % 3}" / f"f{i}.dat", i)

        catalog = build_catalog(self.root, self.ui, max_workers=8)

        file_paths = [entry.path for entry in catalog.files]
        dir_paths = [d.path for d in catalog.dirs]
        self.assertEqual(len(file_paths), 20)
        self.assertEqual(len(file_paths), len(set(file_paths)))
        self.assertEqual(len(dir_paths), len(set(dir_paths)))

    def test_root_that_is_not_a_directory_raises(self):
        file_root = _write(self.root / "file.txt", 1)
        with self.assertRaises(TraversalError):
            build_catalog(file_root, self.ui)
        with self.assertRaises(TraversalError):
            build_catalog(self.root / "missing", self.ui)

    def test_unlistable_root_raises(self):
        real_scandir = os.scandir

        def fake_scandir(path):
            if Path(path) == self.root:
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        with patch("cloud_migrator.core_logic.catalog.os.scandir", side_effect=fake_scandir):
            with self.assertRaises(TraversalError):
                build_catalog(self.root, self.ui)

    def test_unreadable_subdirectory_is_skipped_with_warning(self):
        for i in range(9):
            _write(self.root / f"ok{i % 3}" / f"file{i}.txt", 10 + i)
        _write(self.root / "locked" / "hidden.txt", 5)
        locked = self.root / "locked"
        real_scandir = os.scandir

        def fake_scandir(path):
            if Path(path) == locked:
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        with patch("cloud_migrator.core_logic.catalog.os.scandir", side_effect=fake_scandir):
            with self.assertLogs("cloud_migrator.core_logic.catalog", level="WARNING") as logs:
                catalog = build_catalog(self.root, self.ui)

        self.assertEqual(len(catalog.files), 9)
        self.assertNotIn(locked / "hidden.txt", [entry.path for entry in catalog.files])
        self.assertEqual([path for path, _ in catalog.errors], [locked])
        self.assertEqual(len(self.ui.named("traversal_error")), 1)
        self.assertTrue(any(str(locked) in line for line in logs.output))

    def test_dangling_symlink_is_skipped(self):
        _write(self.root / "real.txt", 4)
        os.symlink(self.root / "nowhere", self.root / "dangling")

        with self.assertLogs("cloud_migrator.core_logic.catalog", level="WARNING"):
            catalog = build_catalog(self.root, self.ui)

        self.assertEqual([entry.name for entry in catalog.files], ["real.txt"])
        self.assertEqual(catalog.errors, [])

    def test_symlink_cycle_is_not_followed(self):
        _write(self.root / "a" / "file.txt", 4)
        os.symlink(self.root / "a", self.root / "a" / "loop")

        catalog = build_catalog(self.root, self.ui)

        self.assertEqual([entry.path for entry in catalog.files], [self.root / "a" / "file.txt"])
        self.assertEqual([d.path for d in catalog.dirs], [self.root / "a"])

    def test_symlinked_directory_follow_setting(self):
        outside = Path(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, outside)
        _write(outside / "shared.txt", 4)
        os.symlink(outside, self.root / "linked")

        followed = CatalogBuilder(self.ui, follow_symlinks=True).build(self.root)
        not_followed = CatalogBuilder(self.ui, follow_symlinks=False).build(self.root)

        self.assertEqual([entry.path for entry in followed.files], [self.root / "linked" / "shared.txt"])
        self.assertEqual(not_followed.files, [])
        self.assertEqual(not_followed.dirs, [])

    def test_progress_is_logged_through_module_logger(self):
        _write(self.root / "a" / "one.bin", 1)

        with self.assertLogs(level="INFO") as logs:
            build_catalog(self.root, self.ui)

        self.assertEqual({record.name for record in logs.records}, {"cloud_migrator.core_logic.catalog"})
        self.assertTrue(any("STATE: Building catalog" in line for line in logs.output))


class TestMergeCatalog(unittest.TestCase):
    def test_duplicates_from_overlapping_branches_are_removed(self):
        a = FileEntry.from_path(Path("/src/a.bin"), 10)
        b = FileEntry.from_path(Path("/src/b.bin"), 20)
        dirs = [DirectoryPath(Path("/src/x")), DirectoryPath(Path("/src/x")), DirectoryPath(Path("/src/a"))]

        catalog = merge_catalog([a, b, a, b, a], dirs)

        self.assertEqual(catalog.files, [b, a])
        self.assertEqual([d.path for d in catalog.dirs], [Path("/src/a"), Path("/src/x")])

    def test_unknown_size_sorts_as_zero(self):
        unknown = FileEntry.from_path(Path("/src/unknown"), None)
        known = FileEntry.from_path(Path("/src/known"), 1)

        catalog = merge_catalog([unknown, known], [])

        self.assertEqual(unknown.size, 0)
        self.assertEqual(catalog.files, [known, unknown])
        self.assertEqual(catalog.total_bytes, 1)
        self.assertEqual(catalog.stub_count, 1)


if __name__ == '__main__':
    unittest.main()
