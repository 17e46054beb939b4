"""Tests for the SQLite metadata store."""

import pytest

from notemancy.errors import StorageIOError
from notemancy.metadata_store import MetadataStore
from notemancy.types import ScannedFile


def scanned(path, virtual_path, vault="main", metadata=None, modified="2024-01-01T00:00:00+00:00"):
    return ScannedFile(
        vault=vault,
        path=str(path),
        virtual_path=virtual_path,
        metadata=metadata,
        last_modified=modified,
        created=modified,
    )


class TestSchema:

    def test_pagetable_columns(self, metadata_store):
        rows = metadata_store._conn.execute("PRAGMA table_info(pagetable)").fetchall()
        assert [r["name"] for r in rows] == [
            "id", "vault", "path", "virtualPath", "metadata", "last_modified", "created",
        ]

    def test_attachments_columns(self, metadata_store):
        rows = metadata_store._conn.execute("PRAGMA table_info(attachments)").fetchall()
        assert [r["name"] for r in rows] == ["id", "path", "virtualPath", "type"]

    def test_unopenable_path(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(StorageIOError):
            MetadataStore(blocker / "metadata.db")


class TestUpsert:

    def test_upsert_is_idempotent(self, metadata_store, tmp_path):
        path = tmp_path / "a.md"
        metadata_store.upsert_page(scanned(path, "a.md"))
        metadata_store.upsert_page(scanned(path, "a.md"))
        assert metadata_store.count() == 1

    def test_last_write_wins(self, metadata_store, tmp_path):
        path = tmp_path / "a.md"
        metadata_store.upsert_page(scanned(path, "a.md"))
        first_id = metadata_store.get_page_by_path(str(path)).id

        metadata_store.upsert_page(scanned(path, "projects/a.md", metadata={"folder": "projects"},
                                           modified="2024-02-02T00:00:00+00:00"))
        page = metadata_store.get_page_by_path(str(path))
        assert page.id == first_id
        assert page.virtual_path == "projects/a.md"
        assert page.metadata_dict == {"folder": "projects"}
        assert page.last_modified.startswith("2024-02-02")

    def test_missing_metadata_stored_as_empty(self, metadata_store, tmp_path):
        metadata_store.upsert_page(scanned(tmp_path / "a.md", "a.md"))
        assert metadata_store.get_page_by_path(str(tmp_path / "a.md")).metadata == ""

    def test_attachment_upsert(self, metadata_store, tmp_path):
        path = str(tmp_path / "img.png")
        metadata_store.upsert_attachment(path, "img.png", "image")
        metadata_store.upsert_attachment(path, "assets/img.png", "image")
        assert metadata_store.count_attachments() == 1
        assert metadata_store.get_attachment(path).virtual_path == "assets/img.png"


class TestQueries:

    @pytest.fixture
    def populated(self, metadata_store, tmp_path):
        metadata_store.upsert_page(scanned(tmp_path / "z.md", "z.md", vault="work"))
        metadata_store.upsert_page(scanned(tmp_path / "b.md", "notes/b.md"))
        metadata_store.upsert_page(scanned(tmp_path / "a.md", "a.md"))
        return metadata_store

    def test_file_tree_ordered_by_virtual_path(self, populated):
        assert [r.virtual_path for r in populated.get_file_tree()] == ["a.md", "notes/b.md", "z.md"]

    def test_get_page_by_virtual_path(self, populated, tmp_path):
        page = populated.get_page_by_virtual_path("notes/b.md")
        assert page.path == str(tmp_path / "b.md")
        assert populated.get_page_by_virtual_path("missing.md") is None

    def test_list_files_by_vault(self, populated, tmp_path):
        assert populated.list_files("work") == [(str(tmp_path / "z.md"), "z.md")]
        assert populated.count("main") == 2
        assert populated.vault_counts() == {"main": 2, "work": 1}

    def test_query_by_fields(self, populated):
        rows = populated.query_by_fields(["virtualPath"], {"vault": "main"})
        assert sorted(r["virtualPath"] for r in rows) == ["a.md", "notes/b.md"]

    def test_query_by_fields_rejects_unknown_columns(self, populated):
        with pytest.raises(ValueError):
            populated.query_by_fields(["path; DROP TABLE pagetable"])
        with pytest.raises(ValueError):
            populated.query_by_fields(["path"], {"nope": 1})


class TestCleanup:

    def test_removes_missing_files_only(self, metadata_store, tmp_path):
        kept = tmp_path / "kept.md"
        kept.write_text("# Kept")
        image = tmp_path / "gone.png"
        metadata_store.upsert_page(scanned(kept, "kept.md"))
        metadata_store.upsert_page(scanned(tmp_path / "gone.md", "gone.md"))
        metadata_store.upsert_attachment(str(image), "gone.png", "image")

        removed = metadata_store.cleanup_stale_records()

        assert sorted(removed) == sorted([str(tmp_path / "gone.md"), str(image)])
        assert metadata_store.count() == 1
        assert metadata_store.count_attachments() == 0
        assert metadata_store.get_page_by_path(str(kept)) is not None
