from __future__ import annotations

"""
Horizontal tidy-tree layout for the Taxatree project.

Positions are computed in content units:

- x grows left to right. A child starts one level_spacing past the right end
  of its parent's connector.
- y is the leaf order times row_height. An internal node sits at the
  midpoint of its first and last child.

`compute_layout` returns a DataFrame indexed by node path, which is the key
the visualization adapter uses to diff renders. `link_curve` samples the
cubic Bezier drawn between a parent's circle and a child's connector.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import TaxatreeConfig
from .graph import TaxonNode

logger = logging.getLogger(__name__)

LAYOUT_COLUMNS = [
    "node",
    "name",
    "rank",
    "participant",
    "depth",
    "parent",
    "x",
    "y",
    "width",
    "height",
]


def node_width(node: TaxonNode, cfg: TaxatreeConfig) -> float:
    """Connector length for a node: label text plus badge and padding."""
    chars = len(node.name or "")
    if node.rank:
        chars += 2
    return chars * cfg.char_width + cfg.node_padding


def _child_path(parent_path: Optional[str], name: str, taken: Dict[str, int]) -> str:
    base = f"{parent_path}/{name}" if parent_path is not None else name
    count = taken.get(base, 0) + 1
    taken[base] = count
    return base if count == 1 else f"{base}~{count}"


def compute_layout(forest: Sequence[TaxonNode], cfg: Optional[TaxatreeConfig] = None) -> pd.DataFrame:
    """
    Lay out a forest as a left-to-right tree.

    Parameters
    ----------
    forest
        Root nodes. Multiple roots are stacked vertically.
    cfg
        TaxatreeConfig with level_spacing, row_height, char_width and
        node_padding.

    Returns
    -------
    pandas.DataFrame
        One row per node, indexed by path, with the columns in
        LAYOUT_COLUMNS. "node" holds the TaxonNode itself.
    """
    cfg = cfg or TaxatreeConfig()

    records: Dict[str, dict] = {}
    order: List[str] = []
    taken: Dict[str, int] = {}
    next_leaf = 0

    # Iterative DFS; entries are (node, parent_path, depth, visited, own_path)
    stack: List[Tuple[TaxonNode, Optional[str], int, bool, Optional[str]]] = [
        (root, None, 0, False, None) for root in reversed(forest)
    ]

    while stack:
        node, parent_path, depth, visited, path = stack.pop()

        if visited:
            rec = records[path]
            if not node.children:
                rec["y"] = next_leaf * cfg.row_height
                next_leaf += 1
            else:
                child_ys = [records[p]["y"] for p in rec["child_paths"]]
                rec["y"] = (min(child_ys) + max(child_ys)) / 2.0
            continue

        path = _child_path(parent_path, node.name, taken)
        width = node_width(node, cfg)
        if parent_path is None:
            x = 0.0
        else:
            parent = records[parent_path]
            x = parent["x"] + parent["width"] + cfg.level_spacing
            parent["child_paths"].append(path)

        records[path] = {
            "node": node,
            "name": node.name,
            "rank": node.rank,
            "participant": node.participant,
            "depth": depth,
            "parent": parent_path,
            "x": x,
            "width": width,
            "height": cfg.row_height / 2.0,
            "child_paths": [],
        }
        order.append(path)

        stack.append((node, parent_path, depth, True, path))
        for child in reversed(node.children):
            stack.append((child, path, depth + 1, False, None))

    df = pd.DataFrame(
        [{col: records[p][col] for col in LAYOUT_COLUMNS} for p in order],
        columns=LAYOUT_COLUMNS,
        dtype=object,
        index=pd.Index(order, name="path"),
    )
    # Text columns stay object so missing parents and participants remain None
    df = df.astype({"depth": int, "x": float, "y": float, "width": float, "height": float})

    logger.debug("Laid out %d nodes over %d leaf rows", len(df), next_leaf)
    return df


def link_curve(start: Tuple[float, float], end: Tuple[float, float], samples: int = 16) -> np.ndarray:
    """
    Sample a horizontal cubic Bezier from start to end.

    Control points share the midpoint x so the curve leaves and enters
    horizontally. Returns an array of shape (samples, 2).
    """
    p0 = np.asarray(start, dtype=float)
    p3 = np.asarray(end, dtype=float)
    mid_x = (p0[0] + p3[0]) / 2.0
    p1 = np.array([mid_x, p0[1]])
    p2 = np.array([mid_x, p3[1]])

    t = np.linspace(0.0, 1.0, max(samples, 2))[:, None]
    return (
        (1 - t) ** 3 * p0
        + 3 * (1 - t) ** 2 * t * p1
        + 3 * (1 - t) * t ** 2 * p2
        + t ** 3 * p3
    )
