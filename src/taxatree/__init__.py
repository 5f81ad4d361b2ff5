"""
Taxatree package.

This package turns flat taxonomy rows into a rendered, exportable tree. It is
organized into small modules for:

- band classification of fine ranks (ranks)
- loading and normalizing taxon rows (data_io)
- display-parent resolution and outline emission (graph)
- outline parsing and rank summaries (outline)
- rank badge and participant markup (labels)
- debounced, single-flight render scheduling (scheduler)
- the scene surface, its layout and the visualization adapter (surface,
  layout, figure)
- the mini-map mirror of a surface (minimap)
- raster, Newick, phyloXML and CSV exports (export)
- building a standalone interactive HTML document (html_builder)
- per-view coordination of trees and the outline cache (manager)

The main public entry points are `build` / `build_forest` for the row to
outline step and `TreeManager` for the full render lifecycle.
"""

from .config import TaxatreeConfig
from .errors import ExportError, RenderError, TaxatreeError
from .graph import BuildResult, TaxonNode, build, build_forest
from .html_builder import build_taxatree_html
from .labels import decorate, to_plain_text
from .manager import TreeCache, TreeManager

__all__ = [
    "BuildResult",
    "ExportError",
    "RenderError",
    "TaxatreeConfig",
    "TaxatreeError",
    "TaxonNode",
    "TreeCache",
    "TreeManager",
    "build",
    "build_forest",
    "build_taxatree_html",
    "decorate",
    "to_plain_text",
]
