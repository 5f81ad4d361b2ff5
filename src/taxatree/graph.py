from __future__ import annotations

"""
Taxonomy graph construction for the Taxatree project.

This module turns a flat set of TaxonRow records into a forest of TaxonNode
objects and serializes it as an annotated outline.

Responsibilities:
- Resolve a display parent for every row using band adjacency rules
- Hold the parent to child structure in a networkx DiGraph
- Refuse attachments that would close a cycle
- Pick the root set (a forced base id or every unattached row)
- Order siblings deterministically and emit the outline depth first

Display parent resolution for a row R with band B:

1. R.parent_id is present in the row set
2. B is species: the nearest present species-band ancestor
3. B is species: the nearest present genus-band ancestor
4. the nearest present ancestor of any band
5. nothing found: R is a root candidate

Ancestor chains only ever search upward. A node is attached to exactly one
parent.
"""

import logging
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import networkx as nx

from .config import TaxatreeConfig
from .data_io import RowLike, TaxonRow, normalize_rows
from .labels import annotate
from .ranks import (
    UNKNOWN_BAND_INDEX,
    band_index,
    band_of,
    is_genus_band,
    is_species_band,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass
class TaxonNode:
    """
    One node of a built or parsed forest.

    id is None for nodes parsed from outline text. content keeps the raw
    outline label the node came from, if any.
    """

    id: Optional[int]
    name: str
    rank: str = ""
    band: str = ""
    children: List["TaxonNode"] = field(default_factory=list)
    participant: Optional[str] = None
    content: str = ""

    def __post_init__(self) -> None:
        if not self.band and self.rank:
            self.band = band_of(self.rank)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def iter_nodes(self) -> Iterator["TaxonNode"]:
        """Yield this node and its descendants in depth-first pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


@dataclass
class BuildResult:
    """Everything a single build produces."""

    forest: List[TaxonNode]
    outline: str
    dropped_ids: List[int]
    roots: List[int]
    graph: nx.DiGraph

    def parent_of(self, taxon_id: int) -> Optional[int]:
        """Return the resolved display parent of a node, or None for roots."""
        if taxon_id not in self.graph:
            return None
        preds = list(self.graph.predecessors(taxon_id))
        return preds[0] if preds else None


def iter_forest(forest: Iterable[TaxonNode]) -> Iterator[TaxonNode]:
    for root in forest:
        yield from root.iter_nodes()


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def fold_name(name: str) -> str:
    """Case and accent insensitive form of a name for sorting."""
    decomposed = unicodedata.normalize("NFKD", name or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def sibling_sort_key(node: TaxonNode) -> Tuple[int, str, str, str, int]:
    """Band order, then folded name; raw name and id break remaining ties."""
    index = band_index(node.rank)
    return (
        index,
        band_of(node.rank) if index == UNKNOWN_BAND_INDEX else "",
        fold_name(node.name),
        node.name,
        node.id if node.id is not None else -1,
    )


# ---------------------------------------------------------------------------
# Display parent resolution
# ---------------------------------------------------------------------------


def resolve_display_parent(row: TaxonRow, by_id: Dict[int, TaxonRow]) -> Optional[int]:
    """
    Return the display parent id for a row, or None for a root candidate.

    A self-referencing parent is discarded and the row's own id is removed
    from its ancestor chain before resolution continues.
    """
    parent_id = row.parent_id
    if parent_id == row.id:
        logger.debug("Row %s names itself as parent; ignoring parent", row.id)
        parent_id = None

    if parent_id is not None and parent_id in by_id:
        return parent_id

    # ancestor_ids runs root -> nearest
    nearest_first = [a for a in reversed(row.ancestor_ids) if a != row.id and a in by_id]

    if is_species_band(row.rank):
        for ancestor in nearest_first:
            if is_species_band(by_id[ancestor].rank):
                return ancestor
        for ancestor in nearest_first:
            if is_genus_band(by_id[ancestor].rank):
                return ancestor

    if nearest_first:
        return nearest_first[0]
    return None


# ---------------------------------------------------------------------------
# Outline emission
# ---------------------------------------------------------------------------


def _line_label(node: TaxonNode) -> str:
    name = " ".join((node.name or "").split())
    return annotate(name, node.rank, node.participant)


def emit_outline(forest: Sequence[TaxonNode], max_depth: int) -> str:
    """
    Serialize a forest as an indented bullet outline.

    Each line is two spaces per level, "- ", the name and a rank token when
    the rank is known. Indentation is capped at max_depth levels.
    """
    lines: List[str] = []
    stack: List[Tuple[TaxonNode, int]] = [(root, 0) for root in reversed(forest)]

    while stack:
        node, depth = stack.pop()
        indent = "  " * min(depth, max_depth)
        lines.append(f"{indent}- {_line_label(node)}")
        stack.extend((child, depth + 1) for child in reversed(node.children))

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_taxonomy_graph(rows: Sequence[TaxonRow]) -> nx.DiGraph:
    """
    Build the parent -> child display graph for normalized rows.

    Duplicate ids collapse to the last row seen. An edge that would close a
    cycle is refused and the row stays a root candidate.
    """
    by_id: Dict[int, TaxonRow] = {}
    for row in rows:
        by_id[row.id] = row

    G = nx.DiGraph()
    for taxon_id, row in by_id.items():
        G.add_node(taxon_id, row=row)

    for taxon_id, row in by_id.items():
        parent = resolve_display_parent(row, by_id)
        if parent is None:
            continue
        if nx.has_path(G, taxon_id, parent):
            logger.warning(
                "Refusing to attach %s under %s: the edge would close a cycle",
                taxon_id,
                parent,
            )
            continue
        G.add_edge(parent, taxon_id)

    logger.debug(
        "Display graph has %d nodes and %d edges",
        G.number_of_nodes(),
        G.number_of_edges(),
    )
    return G


def _materialize(G: nx.DiGraph, roots: List[int]) -> List[TaxonNode]:
    nodes: Dict[int, TaxonNode] = {}
    for taxon_id in G.nodes:
        row: TaxonRow = G.nodes[taxon_id]["row"]
        nodes[taxon_id] = TaxonNode(
            id=row.id,
            name=row.name,
            rank=row.rank,
            band=band_of(row.rank),
        )

    for taxon_id, node in nodes.items():
        children = [nodes[c] for c in G.successors(taxon_id)]
        node.children = sorted(children, key=sibling_sort_key)

    return sorted((nodes[r] for r in roots), key=sibling_sort_key)


def build_forest(
    rows: Optional[Iterable[RowLike]],
    base_id: Optional[int] = None,
    cfg: Optional[TaxatreeConfig] = None,
) -> BuildResult:
    """
    Build a forest and its outline from flat rows.

    Parameters
    ----------
    rows
        TaxonRow records or raw mappings (see data_io.normalize_rows).
    base_id
        Optional id to force as the sole root. Ignored when it is not in the
        row set.
    cfg
        Optional TaxatreeConfig supplying max_outline_depth and the synthetic
        root id.

    Returns
    -------
    BuildResult
        forest, outline text, ids excluded by a forced root, root ids and
        the underlying display graph.
    """
    cfg = cfg or TaxatreeConfig()
    normalized = normalize_rows(rows, cfg)
    G = build_taxonomy_graph(normalized)

    dropped: List[int] = []
    if base_id is not None and base_id in G:
        roots = [base_id]
        reachable = nx.descendants(G, base_id) | {base_id}
        dropped = sorted(n for n in G.nodes if n not in reachable)
        if dropped:
            logger.info(
                "Base id %s leaves %d taxa unreachable; they are excluded from the outline",
                base_id,
                len(dropped),
            )
    else:
        if base_id is not None:
            logger.info("Base id %s is not in the row set; using every unattached row", base_id)
        roots = [n for n in G.nodes if G.in_degree(n) == 0]

    forest = _materialize(G, roots)
    outline = emit_outline(forest, cfg.max_outline_depth)

    logger.info(
        "Built forest with %d roots from %d rows",
        len(forest),
        len(normalized),
    )

    return BuildResult(
        forest=forest,
        outline=outline,
        dropped_ids=dropped,
        roots=[n.id for n in forest],
        graph=G,
    )


def build(
    rows: Optional[Iterable[RowLike]],
    base_id: Optional[int] = None,
    cfg: Optional[TaxatreeConfig] = None,
) -> str:
    """Build the annotated outline text for a row set."""
    return build_forest(rows, base_id, cfg).outline
