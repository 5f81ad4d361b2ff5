from __future__ import annotations

"""
Data loading utilities for the Taxatree project.

This module is responsible for turning raw taxonomy rows into TaxonRow records
that the graph builder can consume.

Responsibilities:
- Load a row table from CSV, TSV, Excel or JSON
- Coerce identifiers, names and ranks into a consistent shape
- Parse ancestor chains given as sequences or as "{1,2,3}" strings
- Drop the synthetic universal root from every ancestor chain

Rows come from upstream services with inconsistent key spelling
(taxon_id vs id, parentId vs parent_id). `normalize_rows` accepts both.
Call `load_rows(path, cfg)` as the main entry point for files.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

import pandas as pd

from .config import SYNTHETIC_ROOT_ID, TaxatreeConfig
from .ranks import normalize_rank

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaxonRow:
    """One flat classification record."""

    id: int
    name: str
    rank: str
    parent_id: Optional[int]
    ancestor_ids: Tuple[int, ...]


RowLike = Union[TaxonRow, Mapping[str, Any]]

_ID_KEYS = ("id", "taxon_id", "taxonId")
_PARENT_KEYS = ("parent_id", "parentId")
_ANCESTOR_KEYS = ("ancestor_ids", "ancestorIds", "ancestors")

_BRACKETED = re.compile(r"[\{\[]([^\}\]]*)[\}\]]")


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def _coerce_id(value: Any) -> Optional[int]:
    """Return value as an int id, or None when it is missing or unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        try:
            as_float = float(str(value).strip())
        except (TypeError, ValueError):
            return None
        return None if math.isnan(as_float) else int(as_float)


def parse_ancestors(value: Any) -> List[int]:
    """
    Parse an ancestor chain into a list of ints.

    Accepted shapes:
      - any iterable of ids (list, tuple, numpy array)
      - "{1,2,3}" as emitted by Postgres array columns
      - "[1, 2, 3]" as written by pandas for list columns
      - "1,2,3"

    Entries that do not parse are skipped.
    """
    if value is None:
        return []
    if isinstance(value, float) and math.isnan(value):
        return []

    if isinstance(value, str):
        match = _BRACKETED.search(value)
        body = match.group(1) if match else value
        parts: Iterable[Any] = [p for p in re.split(r"[,\s]+", body) if p]
    else:
        try:
            parts = list(value)
        except TypeError:
            return []

    ids = []
    for part in parts:
        parsed = _coerce_id(part)
        if parsed is not None:
            ids.append(parsed)
    return ids


def _first_present(row: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in row:
            value = row[key]
            if value is not None:
                return value
    return None


def _clean_name(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------


def normalize_row(
    row: RowLike,
    synthetic_root_id: int = SYNTHETIC_ROOT_ID,
) -> Optional[TaxonRow]:
    """
    Normalize a single raw row into a TaxonRow.

    Missing names fall back to "Taxon <id>" and missing ranks to "". Rows
    without a usable id return None.
    """
    if isinstance(row, TaxonRow):
        ancestors = tuple(a for a in row.ancestor_ids if a != synthetic_root_id)
        return TaxonRow(
            id=row.id,
            name=row.name or f"Taxon {row.id}",
            rank=normalize_rank(row.rank),
            parent_id=row.parent_id,
            ancestor_ids=ancestors,
        )

    taxon_id = _coerce_id(_first_present(row, _ID_KEYS))
    if taxon_id is None:
        logger.debug("Skipping row without a usable id: %r", row)
        return None

    name = _clean_name(row.get("name"))
    rank = normalize_rank(_clean_name(row.get("rank")))
    parent_id = _coerce_id(_first_present(row, _PARENT_KEYS))
    ancestors = tuple(
        a
        for a in parse_ancestors(_first_present(row, _ANCESTOR_KEYS))
        if a != synthetic_root_id
    )

    return TaxonRow(
        id=taxon_id,
        name=name or f"Taxon {taxon_id}",
        rank=rank,
        parent_id=parent_id,
        ancestor_ids=ancestors,
    )


def normalize_rows(
    rows: Optional[Iterable[RowLike]],
    cfg: Optional[TaxatreeConfig] = None,
) -> List[TaxonRow]:
    """Normalize raw rows, skipping the ones without an id."""
    synthetic_root_id = cfg.synthetic_root_id if cfg else SYNTHETIC_ROOT_ID
    result = []
    for raw in rows or []:
        if raw is None:
            continue
        row = normalize_row(raw, synthetic_root_id)
        if row is not None:
            result.append(row)
    return result


# ---------------------------------------------------------------------------
# File loaders
# ---------------------------------------------------------------------------


def _load_table_any(path: Path) -> List[Mapping[str, Any]]:
    """
    Load raw row records from a file based on its extension.

    Supported formats:
      - .csv via pandas.read_csv
      - .tsv via pandas.read_csv with a tab separator
      - .xlsx / .xls via pandas.read_excel
      - .json holding either a list of rows or {"rows": [...]}

    Raises FileNotFoundError if the file does not exist, and ValueError for
    unsupported suffixes.
    """
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    suffix = path.suffix.lower()

    if suffix == ".json":
        logger.info("Loading JSON rows from %s", path)
        with path.open("r", encoding="utf-8") as file_object:
            payload = json.load(file_object)
        if isinstance(payload, dict):
            payload = payload.get("rows", [])
        if not isinstance(payload, list):
            raise ValueError(f"JSON rows file {path} must hold a list of rows")
        return payload

    if suffix in {".xlsx", ".xls"}:
        logger.info("Loading Excel table from %s", path)
        df = pd.read_excel(path)
    elif suffix == ".csv":
        logger.info("Loading CSV table from %s", path)
        df = pd.read_csv(path)
    elif suffix == ".tsv":
        logger.info("Loading TSV table from %s", path)
        df = pd.read_csv(path, sep="\t")
    else:
        raise ValueError(f"Unsupported data file extension '{suffix}' for {path}")

    df = df.rename(columns=lambda c: str(c).strip())
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def load_rows(path: Union[str, Path], cfg: Optional[TaxatreeConfig] = None) -> List[TaxonRow]:
    """
    High level entry point: load a row file and return normalized rows.

    Parameters
    ----------
    path
        Path to a .csv, .tsv, .xlsx/.xls or .json file.
    cfg
        Optional TaxatreeConfig; its synthetic_root_id is filtered from
        ancestor chains.

    Returns
    -------
    list of TaxonRow
    """
    records = _load_table_any(Path(path))
    rows = normalize_rows(records, cfg)

    logger.info(
        "Loaded %d taxon rows (%d raw records) from %s",
        len(rows),
        len(records),
        path,
    )

    return rows
