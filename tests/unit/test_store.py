"""
Unit tests for the outline store.
"""

from wbs_backend.store import OutlineStore


class TestOutlineStore:
    def test_load_missing(self, tmp_path):
        store = OutlineStore(tmp_path, "outline")
        assert not store.exists()
        assert store.load() is None

    def test_save_and_load(self, tmp_path):
        store = OutlineStore(tmp_path / "nested", "outline")
        path = store.save("Project\n  Planning")
        assert path == tmp_path / "nested" / "outline.txt"
        assert store.load() == "Project\n  Planning"

    def test_save_overwrites(self, tmp_path):
        store = OutlineStore(tmp_path, "outline")
        store.save("A")
        store.save("B")
        assert store.load() == "B"

    def test_clear(self, tmp_path):
        store = OutlineStore(tmp_path, "outline")
        assert not store.clear()
        store.save("A")
        assert store.clear()
        assert store.load() is None
