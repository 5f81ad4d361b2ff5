from __future__ import annotations

"""
Tree coordination for the Taxatree project.

A TreeManager owns every tree shown in one visualization area (the explore,
compare or checklist view). It holds

- the trees and their surfaces, render handles and mini-maps
- one RenderScheduler, which serializes renders per tree id
- one VisualizationAdapter

Managers never share state; the id prefix keeps tree ids from different
managers apart. Only the active tree is visible and only visible trees are
ever rendered.

TreeCache persists explore-mode outlines on disk so a closed session can be
restored. Closing a tree evicts its cache entry.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .config import TaxatreeConfig
from .data_io import RowLike, TaxonRow, normalize_rows
from .errors import ExportError, RenderError
from .export import (
    build_graph_object,
    export_phylogenetic,
    export_raster,
    export_share_image,
    export_tabular,
)
from .figure import RenderHandle, VisualizationAdapter
from .graph import TaxonNode, build_forest
from .html_builder import export_interactive_document, render_offscreen
from .labels import decorate, to_plain_text
from .minimap import MiniMapSynchronizer
from .outline import parse_outline, summarize_outline
from .scheduler import RenderScheduler
from .surface import Surface

logger = logging.getLogger(__name__)

TREE_MODES = ("explore", "compare", "checklist")
RENDER_NOTICE = "Couldn't build a tree for this selection."


# ---------------------------------------------------------------------------
# Tree cache
# ---------------------------------------------------------------------------


class TreeCache:
    """
    Outline cache keyed by who asked for which taxon.

    Each entry is a small JSON file in the cache directory.
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    @staticmethod
    def cache_key(
        username: str,
        taxon_id: Union[int, str],
        scope: str = "global",
        region: str = "",
    ) -> str:
        return f"{(username or '').strip().lower()}|{taxon_id}|{scope or 'global'}|{region or ''}"

    def _path(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def put(self, key: str, outline: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        payload = {
            "key": key,
            "outline": outline,
            "saved_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._path(key).open("w", encoding="utf-8") as file_object:
            json.dump(payload, file_object)
        logger.debug("Cached outline for %s", key)

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as file_object:
                payload = json.load(file_object)
        except (OSError, ValueError):
            logger.warning("Discarding unreadable cache entry %s", path)
            path.unlink(missing_ok=True)
            return None
        return payload.get("outline")

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if path.exists():
            path.unlink()
            logger.debug("Evicted cached outline for %s", key)
            return True
        return False

    def clear(self) -> int:
        if not self.directory.exists():
            return 0
        removed = 0
        for path in self.directory.glob("*.json"):
            path.unlink()
            removed += 1
        logger.info("Cleared %d cached outlines", removed)
        return removed


# ---------------------------------------------------------------------------
# Trees
# ---------------------------------------------------------------------------


@dataclass
class Tree:
    """One tree tab: its source, built forest and live render state."""

    id: str
    title: str
    mode: str
    surface: Surface
    outline: str
    forest: List[TaxonNode]
    source_rows: Optional[List[TaxonRow]] = None
    source_outline: Optional[str] = None
    base_id: Optional[int] = None
    dropped_ids: List[int] = field(default_factory=list)
    cache_key: Optional[str] = None
    render_handle: Optional[RenderHandle] = None
    minimap: Optional[MiniMapSynchronizer] = None
    visible: bool = False
    render_count: int = 0

    @property
    def decorated(self) -> str:
        return decorate(self.outline)

    @property
    def plain_text(self) -> str:
        return to_plain_text(self.outline)


class TreeManager:
    """
    Coordinator for the trees of one visualization area.

    Parameters
    ----------
    cfg
        TaxatreeConfig with timing, layout and export settings.
    id_prefix
        Prefix for tree ids, e.g. "tree", "compare" or "checklist".
    cache
        Optional TreeCache for explore-mode outlines. Defaults to one in
        cfg.cache_dir when that is set.
    """

    def __init__(
        self,
        cfg: Optional[TaxatreeConfig] = None,
        id_prefix: str = "tree",
        cache: Optional[TreeCache] = None,
    ) -> None:
        self.cfg = cfg or TaxatreeConfig()
        self.id_prefix = id_prefix
        if cache is None and self.cfg.cache_dir is not None:
            cache = TreeCache(self.cfg.cache_dir)
        self.cache = cache
        self.trees: Dict[str, Tree] = {}
        self.active_id: Optional[str] = None
        self.adapter = VisualizationAdapter(self.cfg)
        self.scheduler = RenderScheduler(self.render_now, self.cfg)
        self._counter = 0

    def _next_id(self) -> str:
        self._counter += 1
        return f"{self.id_prefix}-{self._counter}"

    def get(self, tree_id: str) -> Tree:
        try:
            return self.trees[tree_id]
        except KeyError:
            raise KeyError(f"Unknown tree id: {tree_id}") from None

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def add_tree(
        self,
        title: str,
        rows: Optional[Iterable[RowLike]] = None,
        outline: Optional[str] = None,
        base_id: Optional[int] = None,
        mode: str = "explore",
        cache_key: Optional[str] = None,
    ) -> str:
        """
        Create a tree from rows or outline text, activate it and schedule
        its first render.

        Returns the new tree id.
        """
        if mode not in TREE_MODES:
            raise ValueError(f"Unknown tree mode {mode!r}; expected one of {TREE_MODES}")
        if rows is None and outline is None:
            raise ValueError("add_tree needs rows or an outline")

        tree_id = self._next_id()
        source_rows = None
        dropped: List[int] = []

        if rows is not None:
            source_rows = normalize_rows(rows, self.cfg)
            result = build_forest(source_rows, base_id, self.cfg)
            outline_text, forest, dropped = result.outline, result.forest, result.dropped_ids
        else:
            outline_text = outline or ""
            forest = parse_outline(outline_text, self.cfg.max_outline_depth)

        tree = Tree(
            id=tree_id,
            title=title,
            mode=mode,
            surface=Surface(self.cfg.surface_width, self.cfg.surface_height, self.cfg.theme),
            outline=outline_text,
            forest=forest,
            source_rows=source_rows,
            source_outline=outline,
            base_id=base_id,
            dropped_ids=dropped,
            cache_key=cache_key,
        )
        self.trees[tree_id] = tree

        if mode == "explore" and cache_key and self.cache is not None:
            self.cache.put(cache_key, outline_text)

        logger.info("Added %s tree %s (%r) with %d roots", mode, tree_id, title, len(forest))
        self.activate(tree_id, delay_ms=self.cfg.render_delay_ms)
        return tree_id

    def restore_tree(self, title: str, cache_key: str) -> Optional[str]:
        """Re-open an explore tree from the cache; None when not cached."""
        if self.cache is None:
            return None
        outline = self.cache.get(cache_key)
        if outline is None:
            return None
        return self.add_tree(title, outline=outline, cache_key=cache_key)

    # ------------------------------------------------------------------
    # Visibility and rendering
    # ------------------------------------------------------------------

    def activate(self, tree_id: str, delay_ms: Optional[float] = None) -> None:
        """Show tree_id, hide the others and schedule a render for it."""
        self.get(tree_id)
        for tid, tree in self.trees.items():
            tree.visible = tid == tree_id
        self.active_id = tree_id
        delay = self.cfg.tab_shown_delay_ms if delay_ms is None else delay_ms
        self.scheduler.request_render(tree_id, delay)

    def rerender_active(self) -> None:
        """Re-render the active tree after a data or size change."""
        if self.active_id is not None:
            self.scheduler.request_render(self.active_id, self.cfg.rerender_delay_ms)

    def reactivate_visible(self) -> None:
        """Re-render every visible tree, e.g. when its view is shown again."""
        for tree_id, tree in self.trees.items():
            if tree.visible:
                self.scheduler.request_render(tree_id, self.cfg.tab_shown_delay_ms)

    def render_now(self, tree_id: str) -> None:
        """
        Draw or refresh one tree. This is the scheduler's render callable.

        Uses a diff update when the tree already has a live handle, attaches
        the mini-map on first render, and turns RenderError into a notice on
        the tree's surface.
        """
        tree = self.trees.get(tree_id)
        if tree is None:
            logger.debug("Render for removed tree %s skipped", tree_id)
            return
        if not tree.visible:
            logger.debug("Tree %s is hidden; not rendering", tree_id)
            return

        try:
            if tree.render_handle is not None and tree.render_handle.attached:
                self.adapter.update(tree.render_handle, tree.forest)
            else:
                tree.render_handle = self.adapter.attach(tree.surface, tree.forest)
        except RenderError as exc:
            logger.warning("Couldn't render tree %s: %s", tree_id, exc)
            if tree.render_handle is not None:
                self.adapter.detach(tree.render_handle)
                tree.render_handle = None
            tree.surface.show_notice(RENDER_NOTICE)
            return

        if tree.minimap is None:
            tree.minimap = MiniMapSynchronizer(tree.surface, self.cfg)
            tree.minimap.start()

        tree.render_count += 1

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def _release(self, tree: Tree) -> None:
        self.scheduler.cancel(tree.id)
        if tree.render_handle is not None:
            self.adapter.detach(tree.render_handle)
            tree.render_handle = None
        if tree.minimap is not None:
            tree.minimap.close()
            tree.minimap = None

    def remove_tree(self, tree_id: str) -> bool:
        """
        Close a tree and release its resources.

        Its cache entry is evicted. When it was active, the last remaining
        tree becomes active.
        """
        tree = self.trees.get(tree_id)
        if tree is None:
            return False

        if tree.cache_key and self.cache is not None:
            self.cache.delete(tree.cache_key)

        self._release(tree)
        del self.trees[tree_id]
        logger.info("Removed tree %s", tree_id)

        if self.active_id == tree_id:
            self.active_id = None
            if self.trees:
                self.activate(list(self.trees)[-1])
        return True

    def clear_all(self) -> None:
        """Close every tree, reset the id counter and clear the cache."""
        for tree in list(self.trees.values()):
            self._release(tree)
        self.trees.clear()
        self.active_id = None
        self._counter = 0
        if self.cache is not None:
            self.cache.clear()
        logger.info("Cleared all trees for %s", self.id_prefix)

    def close(self) -> None:
        """Release every tree and stop the scheduler; the cache is kept."""
        for tree in list(self.trees.values()):
            self._release(tree)
        self.scheduler.close()

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def _export_surface(self, tree: Tree) -> Surface:
        if tree.surface.nodes:
            return tree.surface
        if not tree.forest:
            raise ExportError(f"Tree {tree.id} has nothing to export")
        return render_offscreen(tree.outline, self.cfg, tree.forest)

    def export(self, tree_id: str, kind: str, **options) -> bytes:
        """
        Export a tree.

        kind is one of png, webp, share, html, newick, nhx, phyloxml,
        csv_nodes, csv_edges, graph, outline or plain. Remaining keyword
        options go to the underlying exporter.
        """
        tree = self.get(tree_id)
        kind = kind.lower()

        if kind in ("png", "webp", "jpeg"):
            surface = self._export_surface(tree)
            return export_raster(
                surface,
                scale=options.get("scale", self.cfg.raster_scale),
                fmt=kind,
                max_bytes=options.get("max_bytes"),
                quality=options.get("quality", self.cfg.raster_quality),
                cfg=self.cfg,
            )
        if kind == "share":
            return export_share_image(self._export_surface(tree), self.cfg)
        if kind == "html":
            surface = self._export_surface(tree)
            return export_interactive_document(
                tree.outline, surface, self.cfg, options.get("title", tree.title)
            )
        if kind in ("newick", "nhx", "phyloxml"):
            text = export_phylogenetic(
                tree.forest,
                kind,
                fallback_root_label=options.get("fallback_root_label", tree.title),
                include_internal_labels=options.get("include_internal_labels"),
                cfg=self.cfg,
            )
            return text.encode("utf-8")
        if kind in ("csv_nodes", "csv_edges"):
            return export_tabular(tree.forest, kind.split("_", 1)[1]).encode("utf-8")
        if kind == "graph":
            return json.dumps(build_graph_object(tree.forest)).encode("utf-8")
        if kind == "outline":
            return tree.outline.encode("utf-8")
        if kind == "plain":
            return tree.plain_text.encode("utf-8")

        raise ExportError(f"Unknown export kind: {kind!r}")

    def stats(self, tree_id: str) -> Dict[str, int]:
        """Rank summary of a tree's outline."""
        return summarize_outline(self.get(tree_id).outline)
