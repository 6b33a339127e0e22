"""Unit tests for the file-backed record store."""

import pytest

from outlook_email.exceptions import AmbiguousIdError, RecordNotFoundError
from outlook_email.storage import RecordStore
from outlook_email.storage.repository import normalize_record_id


def test_normalize_record_id() -> None:
    """Test that file names and paths are reduced to lowercase ids."""
    assert normalize_record_id("ABC123.md") == "abc123"
    assert normalize_record_id("storage/abc123.yml") == "abc123"
    assert normalize_record_id("  abc  ") == "abc"


class TestRecordStore:
    """Test suite for RecordStore class."""

    def test_load_all_missing_directory_is_empty(self, store: RecordStore) -> None:
        """Test that a store without a directory has no records."""
        assert not store.storage_dir.exists()
        assert store.load_all() == []

    def test_save_and_load(self, store: RecordStore, make_record) -> None:
        """Test that a saved record can be loaded by id."""
        record = make_record()

        store.save(record)
        loaded = store.load(record.stored_id)

        assert loaded is not None
        assert loaded.to_document() == record.to_document()
        assert (store.storage_dir / f"{record.stored_id}.md").exists()
        assert store.exists(record.stored_id)

    def test_load_missing_returns_none(self, store: RecordStore) -> None:
        """Test that loading an unknown id returns None."""
        assert store.load("does-not-exist") is None

    def test_load_all_skips_unreadable_files(self, store: RecordStore, make_record) -> None:
        """Test that corrupt files are skipped instead of failing the batch."""
        store.save(make_record("AAMk-1"))
        (store.storage_dir / "broken.md").write_text("no front matter", encoding="utf-8")
        (store.storage_dir / "notes.txt").write_text("ignored", encoding="utf-8")

        records = store.load_all()

        assert [r.remote_id for r in records] == ["AAMk-1"]

    def test_find_by_prefix(self, store: RecordStore, make_record) -> None:
        """Test that a unique id prefix finds the record."""
        record = make_record()
        store.save(record)

        assert store.find(record.short_id).stored_id == record.stored_id
        assert store.find(f"{record.stored_id}.md").stored_id == record.stored_id
        assert store.find(record.short_id.upper()).stored_id == record.stored_id

    def test_find_unknown_raises(self, store: RecordStore, make_record) -> None:
        """Test that an unmatched id raises RecordNotFoundError."""
        store.save(make_record())

        with pytest.raises(RecordNotFoundError):
            store.find("zzzzzz")

    def test_find_ambiguous_prefix_raises(self, store: RecordStore, make_record) -> None:
        """Test that a prefix shared by several records is rejected."""
        store.save(make_record("a", _stored_id="abc111"))
        store.save(make_record("b", _stored_id="abc222"))

        with pytest.raises(AmbiguousIdError) as exc_info:
            store.find("abc")

        assert sorted(exc_info.value.matches) == ["abc111", "abc222"]

    def test_find_exact_id_wins_over_prefix(self, store: RecordStore, make_record) -> None:
        """Test that an exact id match is not treated as ambiguous."""
        store.save(make_record("a", _stored_id="abc"))
        store.save(make_record("b", _stored_id="abcdef"))

        assert store.find("abc").remote_id == "a"

    def test_delete(self, store: RecordStore, make_record) -> None:
        """Test that deleting removes the record file."""
        record = make_record()
        store.save(record)

        store.delete(record.stored_id)

        assert store.load(record.stored_id) is None

    def test_clear_removes_everything(self, store: RecordStore, make_record) -> None:
        """Test that clear empties the storage directory and reports the count."""
        store.save(make_record("a"))
        store.save(make_record("b"))
        (store.storage_dir / "attachments").mkdir()

        assert store.clear() == 3
        assert list(store.storage_dir.iterdir()) == []
        assert store.clear() == 0
