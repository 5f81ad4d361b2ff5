from __future__ import annotations

"""
Export formats for the Taxatree project.

This module serializes a built tree into the formats users download:

- raster images (PNG, WebP, JPEG) of the surface scene, via Matplotlib
- Newick text, with or without NHX rank attributes
- a clean {nodes, edges} graph object, and from it
  - phyloXML via Bio.Phylo
  - node and edge CSV tables via pandas

File output goes through `write_export`, which writes to a temporary file
in the target directory and renames it into place, so a failed export never
leaves a partial file behind.

The interactive HTML export lives in html_builder.py.
"""

import io
import logging
import math
import os
import re
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import matplotlib.pyplot as plt
import pandas as pd
from Bio import Phylo
from Bio.Phylo import PhyloXML
from matplotlib.collections import LineCollection

from .config import NEUTRAL_STROKE, TaxatreeConfig
from .errors import ExportError
from .graph import TaxonNode
from .labels import clean_export_label, decorate_label, to_plain_text
from .ranks import band_of
from .surface import CIRCLE_RADIUS, BBox, Surface

logger = logging.getLogger(__name__)


RASTER_PADDING = 4.0
RASTER_DPI = 100
MAX_RASTER_RETRIES = 5
MIN_LOSSY_QUALITY = 0.6
QUALITY_STEP = 0.12
SCALE_STEP = 0.85

LOSSY_FORMATS = {"webp", "jpeg", "jpg"}

NEWICK_UNSAFE_RE = re.compile(r"[()\[\],:;'\s]")
FILE_UNSAFE_RE = re.compile(r"[^\w\-]+")

# Rank vocabulary of the phyloXML 1.10 schema
PHYLOXML_RANKS = {
    "domain", "superkingdom", "kingdom", "subkingdom", "branch", "infrakingdom",
    "superphylum", "phylum", "subphylum", "infraphylum", "microphylum",
    "superdivision", "division", "subdivision", "infradivision",
    "superclass", "class", "subclass", "infraclass",
    "superlegion", "legion", "sublegion", "infralegion",
    "supercohort", "cohort", "subcohort", "infracohort",
    "superorder", "order", "suborder",
    "superfamily", "family", "subfamily",
    "supertribe", "tribe", "subtribe", "infratribe",
    "genus", "subgenus", "superspecies", "species", "subspecies",
    "variety", "varietas", "subvariety", "form", "subform", "cultivar",
    "strain", "section", "subsection", "unknown", "other",
}

# format -> (file extension, content type)
EXPORT_FORMATS: Dict[str, Tuple[str, str]] = {
    "newick": ("nwk", "text/x-nh"),
    "nhx": ("nhx", "text/x-nh"),
    "phyloxml": ("xml", "application/xml"),
    "csv_nodes": ("csv", "text/csv"),
    "csv_edges": ("csv", "text/csv"),
    "png": ("png", "image/png"),
    "webp": ("webp", "image/webp"),
    "html": ("html", "text/html"),
}


# ---------------------------------------------------------------------------
# Raster export
# ---------------------------------------------------------------------------


def raster_size(bbox: BBox, scale: float) -> Tuple[int, int]:
    """Pixel dimensions of a raster of bbox at scale."""
    x0, y0, x1, y1 = bbox
    return (
        max(1, math.ceil((x1 - x0) * scale)),
        max(1, math.ceil((y1 - y0) * scale)),
    )


def _render_raster(
    surface: Surface,
    bbox: BBox,
    scale: float,
    fmt: str,
    quality: float,
    cfg: TaxatreeConfig,
) -> bytes:
    """
    Draw the scene in content coordinates and encode it.

    The figure is sized half a pixel over the target so Agg's integer
    truncation lands exactly on ceil(bbox * scale).
    """
    x0, y0, x1, y1 = bbox
    w_px, h_px = raster_size(bbox, scale)
    background = surface.background_color()
    px_to_pt = 72.0 / RASTER_DPI

    fig = plt.figure(
        figsize=((w_px + 0.5) / RASTER_DPI, (h_px + 0.5) / RASTER_DPI),
        dpi=RASTER_DPI,
    )
    try:
        fig.patch.set_facecolor(background)
        ax = fig.add_axes([0.0, 0.0, 1.0, 1.0])
        ax.set_facecolor(background)
        ax.set_xlim(x0, x1)
        ax.set_ylim(y1, y0)
        ax.axis("off")

        links = list(surface.links.values())
        if links:
            ax.add_collection(
                LineCollection(
                    [link.points for link in links],
                    colors=[link.stroke or NEUTRAL_STROKE for link in links],
                    linewidths=1.5 * scale * px_to_pt,
                )
            )

        nodes = list(surface.nodes.values())
        ax.add_collection(
            LineCollection(
                [node.connector() for node in nodes],
                colors=[node.connector_stroke or NEUTRAL_STROKE for node in nodes],
                linewidths=1.5 * scale * px_to_pt,
            )
        )
        centers = [node.circle_center for node in nodes]
        radius_pt = CIRCLE_RADIUS * scale * px_to_pt
        ax.scatter(
            [c[0] for c in centers],
            [c[1] for c in centers],
            s=(2 * radius_pt) ** 2,
            c=[node.circle_fill or NEUTRAL_STROKE for node in nodes],
            edgecolors=background,
            linewidths=0.5,
            zorder=3,
        )

        font_pt = cfg.row_height * 0.4 * scale * px_to_pt
        for node in nodes:
            ax.text(
                node.x + 2.0,
                node.y - 2.0,
                node.name,
                fontsize=font_pt,
                color=cfg.text_color(),
                ha="left",
                va="bottom",
            )

        buffer = io.BytesIO()
        save_kwargs = {}
        if fmt in LOSSY_FORMATS:
            save_kwargs["pil_kwargs"] = {"quality": int(round(quality * 100))}
        fig.savefig(
            buffer,
            format=fmt,
            dpi=RASTER_DPI,
            facecolor=background,
            **save_kwargs,
        )
    finally:
        plt.close(fig)

    return buffer.getvalue()


def export_raster(
    surface: Surface,
    scale: float = 2.0,
    fmt: str = "png",
    max_bytes: Optional[int] = None,
    quality: float = 0.92,
    cfg: Optional[TaxatreeConfig] = None,
) -> bytes:
    """
    Rasterize the surface scene, cropped to its content.

    The pan/zoom transform is ignored: drawing happens in content
    coordinates over the tight bounding box plus a 4 px pad, on the theme
    background. Output dimensions are ceil(bbox * scale).

    With max_bytes set, oversize output is re-encoded up to five more times:
    lossy formats first lower quality in 0.12 steps down to a floor of 0.6,
    then the scale shrinks by 0.85 per attempt.

    Raises
    ------
    ExportError
        The surface is empty, encoding failed, or the output stayed over
        max_bytes.
    """
    cfg = cfg or TaxatreeConfig(theme=surface.theme)
    fmt = fmt.lower()
    bbox = surface.content_bbox(padding=RASTER_PADDING)
    if bbox is None:
        raise ExportError("Nothing to export: the surface is empty")

    attempt = 0
    while True:
        try:
            data = _render_raster(surface, bbox, scale, fmt, quality, cfg)
        except (ValueError, OSError) as exc:
            raise ExportError(f"Failed to encode {fmt} image: {exc}") from exc

        if max_bytes is None or len(data) <= max_bytes:
            logger.info(
                "Exported %s raster %dx%d (%d bytes, scale %.2f)",
                fmt,
                *raster_size(bbox, scale),
                len(data),
                scale,
            )
            return data

        attempt += 1
        if attempt > MAX_RASTER_RETRIES:
            raise ExportError(
                f"{fmt} export is {len(data)} bytes, over the {max_bytes} byte budget"
            )

        if fmt in LOSSY_FORMATS and quality > MIN_LOSSY_QUALITY:
            quality = max(quality - QUALITY_STEP, MIN_LOSSY_QUALITY)
        else:
            scale *= SCALE_STEP
        logger.debug(
            "Raster over budget (%d > %d); retrying at quality %.2f scale %.2f",
            len(data),
            max_bytes,
            quality,
            scale,
        )


def export_share_image(surface: Surface, cfg: Optional[TaxatreeConfig] = None) -> bytes:
    """Raster sized for third-party sharing targets."""
    cfg = cfg or TaxatreeConfig(theme=surface.theme)
    return export_raster(
        surface,
        scale=cfg.raster_scale,
        fmt=cfg.share_format,
        max_bytes=cfg.share_max_bytes,
        quality=cfg.raster_quality,
        cfg=cfg,
    )


# ---------------------------------------------------------------------------
# Newick
# ---------------------------------------------------------------------------


def quote_newick_label(label: str) -> str:
    """Single-quote a label that contains structural characters or spaces."""
    if not label:
        return ""
    if NEWICK_UNSAFE_RE.search(label):
        return "'" + label.replace("'", "''") + "'"
    return label


def _plain_label(node: TaxonNode) -> str:
    text = to_plain_text(decorate_label(node.name, node.rank, node.participant))
    return " ".join(text.split())


def _nhx_comment(node: TaxonNode) -> str:
    if not node.rank:
        return ""
    return f"[&&NHX:rank={node.rank}:band={band_of(node.rank)}]"


def _newick_node(
    node: TaxonNode,
    fallback: str,
    include_internal: bool,
    nhx: bool,
    is_top: bool = False,
) -> str:
    text = _plain_label(node)
    label = quote_newick_label(text)
    comment = _nhx_comment(node) if nhx else ""

    if not node.children:
        return (label or fallback) + comment

    inner = ",".join(
        _newick_node(child, fallback, include_internal, nhx) for child in node.children
    )
    internal = label if include_internal else ""
    if is_top and not internal and not text:
        internal = fallback
    return f"({inner}){internal}{comment}"


def export_newick(
    forest: Sequence[TaxonNode],
    fallback_root_label: str = "root",
    include_internal_labels: bool = False,
    nhx: bool = False,
) -> str:
    """
    Serialize a forest as Newick, without branch lengths.

    A multi-root forest is wrapped in a synthetic root labeled with
    fallback_root_label, as is an unlabeled top node. Leaves left without a
    label also take the fallback.
    """
    fallback = quote_newick_label(fallback_root_label) or "root"

    if not forest:
        return f"{fallback};"

    if len(forest) > 1:
        inner = ",".join(
            _newick_node(root, fallback, include_internal_labels, nhx) for root in forest
        )
        return f"({inner}){fallback};"

    return _newick_node(forest[0], fallback, include_internal_labels, nhx, is_top=True) + ";"


def export_nhx(
    forest: Sequence[TaxonNode],
    fallback_root_label: str = "root",
    include_internal_labels: bool = False,
) -> str:
    """Newick with [&&NHX:rank=..:band=..] comments on ranked nodes."""
    return export_newick(forest, fallback_root_label, include_internal_labels, nhx=True)


# ---------------------------------------------------------------------------
# Graph object
# ---------------------------------------------------------------------------


def build_graph_object(forest: Sequence[TaxonNode]) -> Dict[str, List[Dict[str, str]]]:
    """
    Flatten a forest into {"nodes": [...], "edges": [...]}.

    Nodes get sequential ids n1, n2, ... in pre-order and cleaned names
    (node_<k> when nothing is left). Edges are parent_id/child_id pairs.
    """
    nodes: List[Dict[str, str]] = []
    edges: List[Dict[str, str]] = []

    stack: List[Tuple[TaxonNode, Optional[str]]] = [(root, None) for root in reversed(forest)]
    while stack:
        node, parent_id = stack.pop()
        k = len(nodes) + 1
        node_id = f"n{k}"
        name = clean_export_label(node.content or node.name)
        if not name:
            name = clean_export_label(node.name) or f"node_{k}"
        nodes.append({"id": node_id, "name": name, "rank": node.rank or ""})
        if parent_id is not None:
            edges.append({"parent_id": parent_id, "child_id": node_id})
        stack.extend((child, node_id) for child in reversed(node.children))

    return {"nodes": nodes, "edges": edges}


def _validate_graph(graph: Dict) -> Tuple[List[Dict], List[Dict]]:
    if not isinstance(graph, dict):
        raise ExportError("graph must be an object with nodes and edges")
    nodes = graph.get("nodes") or []
    edges = graph.get("edges") or []
    if not isinstance(nodes, list) or not isinstance(edges, list):
        raise ExportError("graph nodes and edges must be lists")
    return nodes, edges


def forest_from_graph(graph: Dict) -> List[TaxonNode]:
    """Rebuild a forest from a graph object, keeping node and edge order."""
    nodes, edges = _validate_graph(graph)
    by_id: Dict[str, TaxonNode] = {}
    for k, node in enumerate(nodes, start=1):
        by_id[node["id"]] = TaxonNode(
            id=k,
            name=str(node.get("name") or ""),
            rank=str(node.get("rank") or "").lower(),
        )

    children = set()
    for edge in edges:
        parent = by_id.get(edge.get("parent_id"))
        child = by_id.get(edge.get("child_id"))
        if parent is None or child is None:
            raise ExportError(f"Edge refers to an unknown node: {edge!r}")
        if edge["child_id"] in children:
            raise ExportError(f"Node {edge['child_id']} has more than one parent")
        parent.children.append(child)
        children.add(edge["child_id"])

    return [by_id[n["id"]] for n in nodes if n["id"] not in children]


def _phyloxml_clade(node: Dict) -> PhyloXML.Clade:
    rank = str(node.get("rank") or "").lower()
    taxonomy = PhyloXML.Taxonomy(
        scientific_name=node.get("name") or None,
        rank=(rank if rank in PHYLOXML_RANKS else "other") if rank else None,
    )
    return PhyloXML.Clade(name=node.get("name") or None, taxonomies=[taxonomy])


def graph_to_phyloxml(graph: Dict, fallback_root_label: str = "root") -> str:
    """
    Convert a graph object to a phyloXML document.

    Ranks outside the phyloXML vocabulary are written as "other". Several
    roots are joined under a synthetic clade.
    """
    nodes, edges = _validate_graph(graph)
    if not nodes:
        raise ExportError("Cannot write phyloXML for an empty graph")

    clades = {}
    for node in nodes:
        clades[node["id"]] = _phyloxml_clade(node)

    children = set()
    for edge in edges:
        parent = clades.get(edge.get("parent_id"))
        child = clades.get(edge.get("child_id"))
        if parent is None or child is None:
            raise ExportError(f"Edge refers to an unknown node: {edge!r}")
        parent.clades.append(child)
        children.add(edge["child_id"])

    roots = [clades[n["id"]] for n in nodes if n["id"] not in children]
    if len(roots) == 1:
        root = roots[0]
    else:
        root = PhyloXML.Clade(name=fallback_root_label, clades=roots)

    phylogeny = PhyloXML.Phylogeny(root=root, rooted=True, name=root.name)
    document = PhyloXML.Phyloxml({}, phylogenies=[phylogeny])

    buffer = io.StringIO()
    Phylo.write(document, buffer, "phyloxml")
    text = buffer.getvalue()
    if not text.startswith("<?xml"):
        text = '<?xml version="1.0" encoding="UTF-8"?>\n' + text
    return text


def graph_to_csv(graph: Dict, kind: str = "nodes") -> str:
    """
    Render a graph object as CSV.

    kind="nodes" gives id,name,rank and kind="edges" gives
    parent_id,child_id.
    """
    nodes, edges = _validate_graph(graph)
    if kind == "nodes":
        df = pd.DataFrame(nodes, columns=["id", "name", "rank"])
    elif kind == "edges":
        df = pd.DataFrame(edges, columns=["parent_id", "child_id"])
    else:
        raise ExportError(f"Unknown tabular export kind: {kind!r}")
    return df.to_csv(index=False, lineterminator="\n")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def export_phylogenetic(
    forest: Sequence[TaxonNode],
    format: str = "newick",
    fallback_root_label: Optional[str] = None,
    include_internal_labels: Optional[bool] = None,
    cfg: Optional[TaxatreeConfig] = None,
) -> str:
    """Serialize a forest as newick, nhx or phyloxml."""
    cfg = cfg or TaxatreeConfig()
    fallback = fallback_root_label or cfg.fallback_root_label
    internal = cfg.include_internal_labels if include_internal_labels is None else include_internal_labels

    fmt = format.lower()
    if fmt == "newick":
        return export_newick(forest, fallback, internal)
    if fmt == "nhx":
        return export_nhx(forest, fallback, internal)
    if fmt == "phyloxml":
        return graph_to_phyloxml(build_graph_object(forest), fallback)
    raise ExportError(f"Unknown phylogenetic format: {format!r}")


def export_tabular(forest: Sequence[TaxonNode], kind: str = "nodes") -> str:
    """CSV listing of a forest's nodes or edges."""
    return graph_to_csv(build_graph_object(forest), kind)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def export_file_name(label: str, ext: str, when: Optional[datetime] = None) -> str:
    """
    File-safe export name of the form label_YYYY-MM-DD-HH-MM-SS.ext.

    Runs of characters outside [A-Za-z0-9_-] collapse to one underscore.
    """
    when = when or datetime.now()
    safe = FILE_UNSAFE_RE.sub("_", label or "")
    safe = re.sub(r"_{2,}", "_", safe).strip("_") or "tree"
    return f"{safe}_{when.strftime('%Y-%m-%d-%H-%M-%S')}.{ext.lstrip('.')}"


def write_export(path: Union[str, Path], data: Union[str, bytes]) -> Path:
    """
    Write export data to path atomically.

    Data goes to a temporary file beside the target, which is renamed over
    the target once complete. On failure the temporary file is removed and
    ExportError is raised.
    """
    path = Path(path)
    payload = data.encode("utf-8") if isinstance(data, str) else data
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
        os.replace(tmp_name, path)
    except OSError as exc:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise ExportError(f"Failed to write export to {path}: {exc}") from exc

    logger.info("Wrote %d bytes to %s", len(payload), path)
    return path
