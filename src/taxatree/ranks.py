from __future__ import annotations

"""
Rank and band metadata for the Taxatree project.

Fine-grained ranks ("subfamily", "infraorder", "variety") are classified into a
small set of broad bands. Bands drive display-parent resolution in the graph
builder, sibling ordering in the outline, badge glyphs in the label codec and
node colors in the visualization adapter.

A rank missing from the lookup is treated as its own singleton band equal to
the literal rank string. Such bands sort after every canonical band.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class BandMeta:
    """Metadata for a single canonical band."""

    name: str      # Band name such as family or genus
    color: str     # Hex color code for nodes and edges
    glyph: str     # Single letter shown in rank badges


# Canonical bands in their fixed total order
BANDS: List[BandMeta] = [
    BandMeta(name="state", color="#64748b", glyph="S"),
    BandMeta(name="kingdom", color="#a855f7", glyph="K"),
    BandMeta(name="phylum", color="#ef4444", glyph="P"),
    BandMeta(name="class", color="#f59e0b", glyph="C"),
    BandMeta(name="order", color="#6366f1", glyph="O"),
    BandMeta(name="family", color="#06b6d4", glyph="F"),
    BandMeta(name="tribe", color="#0ea5e9", glyph="T"),
    BandMeta(name="genus", color="#10b981", glyph="G"),
    BandMeta(name="species", color="#22c55e", glyph="S"),
]

BAND_ORDER: List[str] = [b.name for b in BANDS]
BAND_INDEX: Dict[str, int] = {name: i for i, name in enumerate(BAND_ORDER)}
BAND_BY_NAME: Dict[str, BandMeta] = {b.name: b for b in BANDS}

# Sort position for ranks that are not in the lookup
UNKNOWN_BAND_INDEX: int = 999

SPECIES_BAND: str = "species"
GENUS_BAND: str = "genus"


# ---------------------------------------------------------------------------
# Fine rank -> band
# ---------------------------------------------------------------------------

RANK_BAND: Dict[str, str] = {
    "stateofmatter": "state",
    # kingdom tier
    "domain": "kingdom",
    "superkingdom": "kingdom",
    "kingdom": "kingdom",
    # phylum tier
    "phylum": "phylum",
    "subphylum": "phylum",
    # class tier
    "superclass": "class",
    "class": "class",
    "subclass": "class",
    "subterclass": "class",
    "infraclass": "class",
    # order tier
    "superorder": "order",
    "order": "order",
    "suborder": "order",
    "infraorder": "order",
    "parvorder": "order",
    "zoosection": "order",
    "zoosubsection": "order",
    # family tier
    "superfamily": "family",
    "epifamily": "family",
    "family": "family",
    "subfamily": "family",
    # tribe tier, between family and genus
    "supertribe": "tribe",
    "tribe": "tribe",
    "subtribe": "tribe",
    # genus tier
    "genus": "genus",
    "genushybrid": "genus",
    "subgenus": "genus",
    "section": "genus",
    "subsection": "genus",
    # species tier
    "complex": "species",
    "species": "species",
    "hybrid": "species",
    "infrahybrid": "species",
    "subspecies": "species",
    "variety": "species",
    "form": "species",
}

# Legacy single-letter suffixes found in older outlines
LETTER_TO_BAND: Dict[str, str] = {
    "F": "family",
    "G": "genus",
    "S": "species",
    "O": "order",
    "C": "class",
    "P": "phylum",
    "K": "kingdom",
    "D": "kingdom",
}


def normalize_rank(rank: Optional[str]) -> str:
    """Lowercase and strip a rank string; None becomes the empty string."""
    if rank is None:
        return ""
    return str(rank).strip().lower()


def band_of(rank: Optional[str]) -> str:
    """
    Classify a fine rank into its band.

    Band names map to themselves, so band_of("family") == "family". Unknown
    ranks come back unchanged as their own singleton band.
    """
    r = normalize_rank(rank)
    return RANK_BAND.get(r, r)


def band_index(rank_or_band: Optional[str]) -> int:
    """Sort position of the band a rank belongs to."""
    return BAND_INDEX.get(band_of(rank_or_band), UNKNOWN_BAND_INDEX)


def is_species_band(rank: Optional[str]) -> bool:
    return band_of(rank) == SPECIES_BAND


def is_genus_band(rank: Optional[str]) -> bool:
    return band_of(rank) == GENUS_BAND


def color_for_rank(rank: Optional[str]) -> Optional[str]:
    """Return the band color for a rank, or None for unknown bands."""
    if not rank:
        return None
    meta = BAND_BY_NAME.get(band_of(rank))
    return meta.color if meta else None


def glyph_for_rank(rank: Optional[str]) -> str:
    """
    Return the one-letter badge glyph for a rank.

    Canonical bands use their configured glyph; unknown bands use the
    upper-cased first letter of the band string.
    """
    band = band_of(rank)
    meta = BAND_BY_NAME.get(band)
    if meta:
        return meta.glyph
    return band[:1].upper()
