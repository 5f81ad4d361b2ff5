from __future__ import annotations

"""
Outline parsing and summary statistics for the Taxatree project.

Outlines are the indented bullet text the graph builder emits, and the form
in which trees are cached and exchanged. `parse_outline` reads one back into a
forest of TaxonNode objects with rank and participant pulled out of the label
tokens. `summarize_outline` computes the per-rank counts shown next to a tree.
"""

import logging
import re
from typing import Dict, List, Set

from .config import DEFAULT_MAX_OUTLINE_DEPTH
from .graph import TaxonNode, iter_forest
from .labels import extract_participant, extract_rank, strip_tokens

logger = logging.getLogger(__name__)


LINE_RE = re.compile(r"^(?P<indent>[ \t]*)(?:(?:[-*+]|\d+[.)])\s+)?(?P<label>.*?)\s*$")

# Stats key -> ranks counted under it
SUMMARY_GROUPS: Dict[str, Set[str]] = {
    "species": {"species", "subspecies", "variety"},
    "genera": {"genus", "subgenus"},
    "families": {"family"},
    "orders": {"order"},
    "classes": {"class"},
    "phyla": {"phylum"},
}


def _indent_width(indent: str) -> int:
    return len(indent.replace("\t", "  "))


def parse_outline(text: str, max_depth: int = DEFAULT_MAX_OUTLINE_DEPTH) -> List[TaxonNode]:
    """
    Parse outline text into a forest.

    Lines may start with a bullet (-, *, +, or "1.") or carry no bullet at
    all. Two spaces make one level and a tab counts as two spaces. A line can
    sit at most one level below the line before it; deeper indentation is
    clamped. Blank lines are skipped.

    Parameters
    ----------
    text
        Outline text, annotated or plain.
    max_depth
        Nesting cap; deeper lines attach at this depth.

    Returns
    -------
    list of TaxonNode
        Root nodes in input order. Nodes parsed from text have id None.
    """
    forest: List[TaxonNode] = []
    stack: List[TaxonNode] = []

    for raw in (text or "").splitlines():
        if not raw.strip():
            continue
        match = LINE_RE.match(raw)
        label = match.group("label")
        if not label:
            continue

        depth = min(_indent_width(match.group("indent")) // 2, max_depth, len(stack))

        node = TaxonNode(
            id=None,
            name=strip_tokens(label),
            rank=extract_rank(label),
            participant=extract_participant(label),
            content=label,
        )

        del stack[depth:]
        if stack:
            stack[-1].children.append(node)
        else:
            forest.append(node)
        stack.append(node)

    logger.debug("Parsed outline into %d roots", len(forest))
    return forest


def summarize_forest(forest: List[TaxonNode]) -> Dict[str, int]:
    """Count leaves and unique names per rank group in a forest."""
    unique: Dict[str, Set[str]] = {key: set() for key in SUMMARY_GROUPS}
    total = 0

    for node in iter_forest(forest):
        if node.is_leaf:
            total += 1
        if not node.rank:
            continue
        for key, ranks in SUMMARY_GROUPS.items():
            if node.rank in ranks:
                unique[key].add(node.name)
                break

    stats = {"total": total}
    stats.update({key: len(names) for key, names in unique.items()})
    return stats


def summarize_outline(text: str) -> Dict[str, int]:
    """
    Summarize an outline for display.

    Returns a dict with "total" (leaf taxa) and unique counts for
    "species", "genera", "families", "orders", "classes" and "phyla".
    """
    return summarize_forest(parse_outline(text))


def summarize_comparison(user1: str, user2: str, shared: str) -> Dict[str, Dict]:
    """
    Summarize the three outlines of a two-user comparison.

    Each user gets its own unique counts and the counts with the shared
    outline added in.
    """
    first = summarize_outline(user1)
    second = summarize_outline(user2)
    both = summarize_outline(shared)

    def with_shared(stats: Dict[str, int]) -> Dict[str, int]:
        return {key: value + both[key] for key, value in stats.items()}

    return {
        "user1": {"unique": first, "withShared": with_shared(first)},
        "user2": {"unique": second, "withShared": with_shared(second)},
        "shared": both,
    }
