"""
Tests for the tree manager, the outline cache and the HTML document.

Tests cover:
    - Tree creation, activation and removal
    - Only visible trees are rendered
    - Render errors become an inline notice
    - Explore-mode caching, restore and eviction
    - Exports through the manager
    - The standalone interactive HTML document
"""

import asyncio
import json

import pytest

from taxatree.config import TaxatreeConfig
from taxatree.errors import ExportError
from taxatree.html_builder import build_taxatree_html, export_interactive_document
from taxatree.manager import RENDER_NOTICE, TreeCache, TreeManager


@pytest.fixture
def cache(tmp_path):
    return TreeCache(tmp_path / "cache")


# ============================================================
# LIFECYCLE
# ============================================================

class TestLifecycle:

    def test_add_tree_renders_inline(self, cfg, felidae_rows):
        manager = TreeManager(cfg)
        tree_id = manager.add_tree("Cats", rows=felidae_rows)

        tree = manager.get(tree_id)
        assert tree_id == "tree-1"
        assert manager.active_id == tree_id
        assert tree.visible
        assert tree.render_count == 1
        assert len(tree.surface.nodes) == 3
        assert tree.minimap is not None and tree.minimap.active
        assert tree.plain_text == "- Felidae\n  - Felis\n    - Felis catus"
        assert "mm-badge" in tree.decorated

    def test_id_prefix_keeps_managers_apart(self, cfg, felidae_outline):
        explore = TreeManager(cfg)
        compare = TreeManager(cfg, id_prefix="compare")
        assert explore.add_tree("a", outline=felidae_outline) == "tree-1"
        assert compare.add_tree("a", outline=felidae_outline, mode="compare") == "compare-1"

    def test_only_active_tree_is_visible(self, cfg, felidae_outline):
        manager = TreeManager(cfg)
        first = manager.add_tree("first", outline=felidae_outline)
        second = manager.add_tree("second", outline=felidae_outline)
        assert not manager.get(first).visible
        assert manager.get(second).visible

        manager.activate(first)
        assert manager.get(first).render_count == 2
        assert manager.get(second).render_count == 1

    def test_hidden_tree_is_not_rendered(self, cfg, felidae_outline):
        manager = TreeManager(cfg)
        first = manager.add_tree("first", outline=felidae_outline)
        manager.add_tree("second", outline=felidae_outline)
        manager.render_now(first)
        assert manager.get(first).render_count == 1

    def test_rerender_active(self, cfg, felidae_outline):
        manager = TreeManager(cfg)
        tree_id = manager.add_tree("first", outline=felidae_outline)
        manager.rerender_active()
        manager.reactivate_visible()
        assert manager.get(tree_id).render_count == 3

    def test_render_error_shows_notice(self, cfg):
        manager = TreeManager(cfg)
        tree_id = manager.add_tree("empty", outline="")
        tree = manager.get(tree_id)
        assert tree.surface.notice == RENDER_NOTICE
        assert tree.render_handle is None
        assert tree.render_count == 0

    def test_remove_active_activates_last_remaining(self, cfg, felidae_outline):
        manager = TreeManager(cfg)
        first = manager.add_tree("first", outline=felidae_outline)
        second = manager.add_tree("second", outline=felidae_outline)
        third = manager.add_tree("third", outline=felidae_outline)

        assert manager.remove_tree(third)
        assert manager.active_id == second
        assert manager.get(second).visible
        assert not manager.remove_tree(third)

        manager.activate(first)
        assert manager.remove_tree(second)
        assert manager.active_id == first

    def test_clear_all_resets_counter(self, cfg, felidae_outline):
        manager = TreeManager(cfg)
        manager.add_tree("first", outline=felidae_outline)
        manager.add_tree("second", outline=felidae_outline)
        manager.clear_all()
        assert manager.trees == {}
        assert manager.active_id is None
        assert manager.add_tree("again", outline=felidae_outline) == "tree-1"

    def test_invalid_arguments(self, cfg):
        manager = TreeManager(cfg)
        with pytest.raises(ValueError):
            manager.add_tree("bad", outline="- A", mode="gallery")
        with pytest.raises(ValueError):
            manager.add_tree("nothing")
        with pytest.raises(KeyError):
            manager.get("tree-99")

    def test_dropped_ids_are_kept(self, cfg, felidae_rows):
        manager = TreeManager(cfg)
        tree_id = manager.add_tree("Felis", rows=felidae_rows, base_id=41944)
        assert manager.get(tree_id).dropped_ids == [9681]
        assert manager.stats(tree_id)["families"] == 0


class TestEventLoop:

    def test_first_render_is_deferred(self, fast_cfg, felidae_outline):
        async def scenario():
            manager = TreeManager(fast_cfg)
            tree_id = manager.add_tree("Cats", outline=felidae_outline)
            assert manager.get(tree_id).render_count == 0
            await manager.scheduler.wait_idle(timeout=2)
            tree = manager.get(tree_id)
            await asyncio.wait_for(tree.render_handle.colored, 1)
            manager.close()
            return tree

        tree = asyncio.run(scenario())
        assert tree.render_count == 1
        assert tree.render_handle is None

    def test_tree_hidden_before_its_render_is_skipped(self, fast_cfg, felidae_outline):
        async def scenario():
            manager = TreeManager(fast_cfg)
            first = manager.add_tree("first", outline=felidae_outline)
            second = manager.add_tree("second", outline=felidae_outline)
            await manager.scheduler.wait_idle(timeout=2)
            counts = (manager.get(first).render_count, manager.get(second).render_count)
            manager.close()
            return counts

        assert asyncio.run(scenario()) == (0, 1)


# ============================================================
# CACHE
# ============================================================

class TestCache:

    def test_cache_key(self):
        assert TreeCache.cache_key("Alice ", 41944) == "alice|41944|global|"
        assert TreeCache.cache_key("alice", "41944", "local", "CA") == "alice|41944|local|CA"

    def test_put_get_delete(self, cache):
        key = TreeCache.cache_key("alice", 41944)
        assert cache.get(key) is None
        cache.put(key, "- Felis {rank:genus}")
        assert cache.get(key) == "- Felis {rank:genus}"
        assert cache.delete(key)
        assert not cache.delete(key)

    def test_unreadable_entry_is_discarded(self, cache):
        key = TreeCache.cache_key("alice", 1)
        cache.put(key, "- A")
        cache._path(key).write_text("{not json", encoding="utf-8")
        assert cache.get(key) is None
        assert not cache._path(key).exists()

    def test_explore_tree_round_trip(self, cfg, cache, felidae_rows, felidae_outline):
        key = TreeCache.cache_key("alice", 9681)
        manager = TreeManager(cfg, cache=cache)
        manager.add_tree("Cats", rows=felidae_rows, cache_key=key)
        assert cache.get(key) == felidae_outline

        restored_manager = TreeManager(cfg, cache=cache)
        restored = restored_manager.restore_tree("Cats", key)
        assert restored_manager.get(restored).outline == felidae_outline
        assert restored_manager.restore_tree("Dogs", TreeCache.cache_key("alice", 9608)) is None

        restored_manager.remove_tree(restored)
        assert cache.get(key) is None

    def test_manager_uses_configured_cache_dir(self, cfg, felidae_outline):
        key = TreeCache.cache_key("alice", 9681)
        manager = TreeManager(cfg)
        assert manager.cache.directory == cfg.cache_dir
        manager.add_tree("Cats", outline=felidae_outline, cache_key=key)
        assert TreeCache(cfg.cache_dir).get(key) == felidae_outline

        restored_manager = TreeManager(cfg)
        assert restored_manager.restore_tree("Cats", key) is not None

    def test_no_cache_without_cache_dir(self, felidae_outline):
        manager = TreeManager(TaxatreeConfig())
        assert manager.cache is None
        assert manager.restore_tree("Cats", "alice|9681|global|") is None

    def test_compare_trees_are_not_cached(self, cfg, cache, felidae_outline):
        key = TreeCache.cache_key("alice", 9681)
        manager = TreeManager(cfg, id_prefix="compare", cache=cache)
        manager.add_tree("Cats", outline=felidae_outline, mode="compare", cache_key=key)
        assert cache.get(key) is None

    def test_clear_all_clears_cache(self, cfg, cache, felidae_outline):
        manager = TreeManager(cfg, cache=cache)
        manager.add_tree("Cats", outline=felidae_outline, cache_key="alice|1|global|")
        manager.clear_all()
        assert cache.get("alice|1|global|") is None


# ============================================================
# EXPORTS
# ============================================================

class TestManagerExports:

    def test_text_exports(self, cfg, felidae_outline):
        manager = TreeManager(cfg)
        tree_id = manager.add_tree("Cats", outline=felidae_outline)
        assert manager.export(tree_id, "newick") == b"(('Felis catus'));"
        assert manager.export(tree_id, "newick", include_internal_labels=True).endswith(b"Felidae;")
        assert manager.export(tree_id, "outline") == felidae_outline.encode("utf-8")
        assert manager.export(tree_id, "plain").startswith(b"- Felidae\n")
        assert manager.export(tree_id, "csv_edges") == b"parent_id,child_id\nn1,n2\nn2,n3\n"
        graph = json.loads(manager.export(tree_id, "graph"))
        assert [n["name"] for n in graph["nodes"]] == ["Felidae", "Felis", "Felis catus"]
        assert manager.export(tree_id, "phyloxml").startswith(b"<?xml")

    def test_png_export(self, cfg, felidae_outline):
        manager = TreeManager(cfg)
        tree_id = manager.add_tree("Cats", outline=felidae_outline)
        assert manager.export(tree_id, "png", scale=1.0).startswith(b"\x89PNG")

    def test_share_export(self, cfg, felidae_outline):
        manager = TreeManager(cfg)
        tree_id = manager.add_tree("Cats", outline=felidae_outline)
        data = manager.export(tree_id, "share")
        assert data[8:12] == b"WEBP"
        assert len(data) <= cfg.share_max_bytes

    def test_hidden_tree_exports_off_screen(self, cfg, felidae_outline):
        manager = TreeManager(cfg)
        first = manager.add_tree("first", outline=felidae_outline)
        manager.remove_tree(manager.add_tree("second", outline=felidae_outline))
        manager.get(first).surface.clear()
        assert manager.export(first, "png", scale=1.0).startswith(b"\x89PNG")

    def test_html_export(self, cfg, felidae_outline):
        manager = TreeManager(cfg)
        tree_id = manager.add_tree("Cats", outline=felidae_outline)
        document = manager.export(tree_id, "html").decode("utf-8")
        assert "<title>Cats</title>" in document

    def test_unknown_kind(self, cfg, felidae_outline):
        manager = TreeManager(cfg)
        tree_id = manager.add_tree("Cats", outline=felidae_outline)
        with pytest.raises(ExportError):
            manager.export(tree_id, "nexus")

    def test_empty_tree_cannot_export_raster(self, cfg):
        manager = TreeManager(cfg)
        tree_id = manager.add_tree("empty", outline="")
        with pytest.raises(ExportError):
            manager.export(tree_id, "png")


# ============================================================
# HTML DOCUMENT
# ============================================================

class TestHtmlDocument:

    def test_document_embeds_outline_and_figure(self, cfg, felidae_outline):
        document = export_interactive_document(felidae_outline, cfg=cfg).decode("utf-8")
        assert document.startswith("<!DOCTYPE html>")
        assert "plotly-2.35.2.min.js" in document
        assert felidae_outline in document
        assert 'id="plot-data"' in document

    def test_script_content_cannot_close_tag(self, cfg):
        document = export_interactive_document("- </script> {rank:genus}", cfg=cfg).decode("utf-8")
        assert "- <\\/script>" in document

    def test_empty_outline(self, cfg):
        with pytest.raises(ExportError):
            export_interactive_document("   ", cfg=cfg)

    def test_build_from_rows(self, cfg, felidae_rows):
        document = build_taxatree_html(rows=felidae_rows, cfg=cfg)
        assert "Felis catus" in document

    def test_build_needs_input(self, cfg):
        with pytest.raises(ExportError):
            build_taxatree_html(cfg=cfg)
