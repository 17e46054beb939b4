"""End-to-end tests for the KnowledgeBase facade."""

import logging

import pytest

from notemancy.api import KnowledgeBase
from notemancy.errors import NotFoundError
from notemancy.types import DocumentEmbedding, PageContent, embedding_id


@pytest.fixture
def garden_kb(kb, vault_root, write_file):
    write_file(vault_root / "a.md", "garden soil compost tomatoes")
    write_file(vault_root / "b.md", "compost soil worms")
    write_file(vault_root / "c.md", "income tax forms deadline")
    write_file(vault_root / "notes" / "d.md", "worms in the garden")
    kb.scan(attachments=False)
    kb.index_embeddings()
    return kb


class TestLexical:

    def test_scan_and_search(self, kb, vault_root, write_file):
        write_file(vault_root / "a.md", "# Hello\nworld wiki")
        write_file(vault_root / "b.md", "# Bye\nlinks here")

        documents, images = kb.scan()
        kb.rebuild_full_text()

        assert documents.scanned == 2
        assert images.scanned == 0
        assert [r.virtual_path for r in kb.metadata_store.get_file_tree()] == ["a.md", "b.md"]
        [hit] = kb.search("wiki")
        assert hit.path == str(vault_root / "a.md")
        assert hit.title == "Hello"
        assert hit.snippet == "world wiki"

    def test_update_and_remove_document(self, kb, vault_root, write_file):
        path = write_file(vault_root / "a.md", "# A\nalpha")
        kb.update_document(str(path))
        assert len(kb.search("alpha")) == 1
        assert kb.remove_document(str(path)) is True
        assert kb.search("alpha") == []


class TestSimilarity:

    def test_exact_text_ranks_first(self, garden_kb, vault_root):
        results = garden_kb.similarity_search("compost soil worms")
        assert results[0].path == str(vault_root / "b.md")
        assert results[0].virtual_path == "b.md"
        assert results[0].similarity == pytest.approx(1.0)
        assert results[0].page is not None
        assert results[0].page.vault == "main"

    def test_sorted_and_thresholded(self, garden_kb):
        results = garden_kb.similarity_search("garden worms", threshold=0.1)
        similarities = [r.similarity for r in results]
        assert similarities == sorted(similarities, reverse=True)
        assert all(s >= 0.1 for s in similarities)

    def test_high_threshold(self, garden_kb, vault_root):
        results = garden_kb.similarity_search("compost soil worms", threshold=0.999)
        assert [r.path for r in results] == [str(vault_root / "b.md")]

    def test_limit(self, garden_kb):
        assert len(garden_kb.similarity_search("compost soil worms", limit=1, threshold=-1.0)) == 1
        assert garden_kb.similarity_search("compost", limit=0) == []

    def test_filter(self, garden_kb):
        results = garden_kb.similarity_search("compost", threshold=-1.0, filter={"virtual_path": "a.md"})
        assert [r.virtual_path for r in results] == ["a.md"]

    def test_nothing_indexed(self, kb):
        with pytest.raises(NotFoundError):
            kb.similarity_search("anything")

    def test_moved_page_has_one_hit(self, kb, vault_root, write_file, memory_store):
        path = write_file(vault_root / "notes" / "a.md", "compost soil worms")
        kb.scan(attachments=False)
        kb.index_embeddings()
        write_file(path, "---\nfolder: projects\n---\ncompost soil worms")
        kb.scan(attachments=False)
        kb.index_embeddings()

        results = kb.similarity_search("compost soil worms", threshold=-1.0)
        assert [r.virtual_path for r in results] == ["projects/notes/a.md"]
        assert memory_store.count(kb.table_name) == 1

    def test_one_hit_per_file(self, garden_kb, vault_root, memory_store, mock_embedding_provider):
        path = str(vault_root / "b.md")
        memory_store.add_embeddings(garden_kb.table_name, [DocumentEmbedding(
            id=embedding_id("old/b.md", path),
            vector=mock_embedding_provider.embed("compost soil"),
            metadata={"physical_path": path, "virtual_path": "old/b.md"},
        )])
        results = garden_kb.similarity_search("compost soil worms", threshold=-1.0)
        paths = [r.path for r in results]
        assert len(paths) == len(set(paths))
        assert results[0].virtual_path == "b.md"


class TestDocuments:

    def test_get_page_content(self, kb, vault_root, write_file):
        text = "---\ntags: [soil]\n---\n# Garden\ncompost"
        write_file(vault_root / "notes" / "g.md", text)
        kb.scan(attachments=False)

        page = kb.get_page_content("notes/g.md")

        assert isinstance(page, PageContent)
        assert page.content == text
        assert page.metadata == {"tags": ["soil"]}

    def test_get_page_content_unknown(self, kb):
        with pytest.raises(NotFoundError):
            kb.get_page_content("missing.md")

    def test_get_page_content_file_gone(self, kb, vault_root, write_file):
        write_file(vault_root / "a.md", "alpha")
        kb.scan(attachments=False)
        (vault_root / "a.md").unlink()
        with pytest.raises(NotFoundError):
            kb.get_page_content("a.md")

    def test_get_attachment_content(self, kb, vault_root):
        image = vault_root / "assets" / "pic.png"
        image.parent.mkdir()
        image.write_bytes(b"\x89PNG\r\n\x1a\n")
        kb.scan()

        data, mime = kb.get_attachment_content("assets/pic.png")

        assert data == b"\x89PNG\r\n\x1a\n"
        assert mime == "image/png"

    def test_attachment_unknown_type(self, kb, vault_root):
        blob = vault_root / "blob.bin-x"
        blob.write_bytes(b"\x00\x01")
        kb.metadata_store.upsert_attachment(str(blob), "blob.bin-x", "image")
        assert kb.get_attachment_content("blob.bin-x") == (b"\x00\x01", "application/octet-stream")

    def test_get_attachment_content_unknown(self, kb):
        with pytest.raises(NotFoundError):
            kb.get_attachment_content("assets/none.png")

    def test_update_by_virtual_path(self, kb, vault_root, write_file):
        path = write_file(vault_root / "a.md", "# A\nalpha")
        kb.scan(attachments=False)
        kb.rebuild_full_text()

        written = kb.update_document_content("# A\nbeta", virtual_path="a.md")

        assert written == str(path)
        assert path.read_text(encoding="utf-8") == "# A\nbeta"
        assert kb.search("alpha") == []
        assert [hit.path for hit in kb.search("beta")] == [str(path)]

    def test_update_prefers_path(self, kb, vault_root, write_file):
        a = write_file(vault_root / "a.md", "alpha")
        b = write_file(vault_root / "b.md", "bravo")
        kb.scan(attachments=False)
        kb.update_document_content("changed", path=str(a), virtual_path="b.md")
        assert a.read_text(encoding="utf-8") == "changed"
        assert b.read_text(encoding="utf-8") == "bravo"

    def test_update_needs_identifier(self, kb):
        with pytest.raises(ValueError):
            kb.update_document_content("text")

    def test_update_unrecorded_file(self, kb, vault_root, write_file):
        path = write_file(vault_root / "a.md", "alpha")
        with pytest.raises(NotFoundError):
            kb.update_document_content("beta", path=str(path))
        assert path.read_text(encoding="utf-8") == "alpha"

    def test_update_deleted_file(self, kb, vault_root, write_file):
        path = write_file(vault_root / "a.md", "alpha")
        kb.scan(attachments=False)
        path.unlink()
        with pytest.raises(NotFoundError):
            kb.update_document_content("beta", virtual_path="a.md")
        assert not path.exists()


class TestFindRelated:

    def test_by_virtual_path_excludes_self(self, garden_kb, vault_root):
        results = garden_kb.find_related("b.md", threshold=-1.0)
        paths = [r.path for r in results]
        assert str(vault_root / "b.md") not in paths
        assert len(paths) == 3

    def test_by_physical_path(self, garden_kb, vault_root):
        results = garden_kb.find_related(str(vault_root / "notes" / "d.md"), limit=2, threshold=-1.0)
        assert len(results) == 2
        assert all(r.virtual_path != "notes/d.md" for r in results)

    def test_unknown_document(self, garden_kb):
        with pytest.raises(NotFoundError):
            garden_kb.find_related("missing.md")


class TestMaintenance:

    def test_cleanup_propagates(self, garden_kb, vault_root, memory_store):
        garden_kb.rebuild_full_text()
        (vault_root / "a.md").unlink()

        removed = garden_kb.cleanup()

        assert removed == [str(vault_root / "a.md")]
        assert garden_kb.metadata_store.count() == 3
        assert not garden_kb.full_text_index.contains(str(vault_root / "a.md"))
        assert memory_store.count(garden_kb.table_name) == 3

    def test_reindex_after_edit(self, garden_kb, vault_root, write_file):
        write_file(vault_root / "c.md", "compost soil worms")
        garden_kb.index_embeddings()
        results = garden_kb.similarity_search("compost soil worms", threshold=0.999)
        assert sorted(r.virtual_path for r in results) == ["b.md", "c.md"]

    def test_info(self, garden_kb):
        info = garden_kb.info()
        assert info["vaults"] == {"main": 4}
        assert info["embedding_table"] == "indexed"
        assert info["embeddings"] == 4
        assert info["indicator"] == "main"

    def test_optimize(self, garden_kb, memory_store):
        garden_kb.index_embeddings(optimize=True)
        assert memory_store.count(garden_kb.table_name) == 4


class TestOpen:

    def test_open_creates_config_and_ops_log(self, tmp_path, memory_store, mock_embedding_provider):
        config_dir = tmp_path / "fresh"
        with KnowledgeBase.open(
            config_dir,
            embedding_store=memory_store,
            embedding_provider=mock_embedding_provider,
        ) as kb:
            kb.scan()
            assert kb.config.config_path.exists()
            assert kb.metadata_store.count() == 0
        assert (config_dir / "notemancy-ops.log").exists()

    def test_ops_log_attached_while_open(self, tmp_path, memory_store, mock_embedding_provider):
        package_logger = logging.getLogger("notemancy")
        with KnowledgeBase.open(
            tmp_path / "fresh",
            embedding_store=memory_store,
            embedding_provider=mock_embedding_provider,
        ) as kb:
            handler = kb._log_handler
            assert handler in package_logger.handlers
            kb.scan(attachments=False)
        assert handler not in package_logger.handlers
        log_text = (tmp_path / "fresh" / "notemancy-ops.log").read_text(encoding="utf-8")
        assert "Scanned 0 markdown files" in log_text
