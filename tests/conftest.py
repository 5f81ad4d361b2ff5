"""
Pytest configuration and fixtures for Taxatree testing.

This module provides:
- A headless Matplotlib backend for the raster exporter
- A configuration with short timers for asyncio-driven tests
- Reusable taxon rows and outlines
"""

import matplotlib

matplotlib.use("Agg")

import pytest

from taxatree.config import TaxatreeConfig
from taxatree.outline import parse_outline


FELIDAE_OUTLINE = (
    "- Felidae {rank:family}\n"
    "  - Felis {rank:genus}\n"
    "    - Felis catus {rank:species}"
)


# ============================================================
# CONFIGURATION FIXTURES
# ============================================================

@pytest.fixture
def cfg(tmp_path):
    """Default configuration with the cache pointed at a temp directory."""
    return TaxatreeConfig(cache_dir=tmp_path / "cache")


@pytest.fixture
def fast_cfg(tmp_path):
    """Configuration with millisecond timers for event loop tests."""
    return TaxatreeConfig(
        cache_dir=tmp_path / "cache",
        render_delay_ms=5,
        rerender_delay_ms=5,
        tab_shown_delay_ms=5,
        cooldown_ms=5,
        frame_ms=1,
        settle_ms=1,
        minimap_debounce_ms=5,
    )


# ============================================================
# DATA FIXTURES
# ============================================================

@pytest.fixture
def felidae_rows():
    """
    Three rows for the cat family.

    Felis has no usable parent_id and resolves through its ancestor chain;
    Felis catus names its parent directly. Every chain starts with the
    synthetic root 48460.
    """
    return [
        {
            "taxon_id": 9681,
            "name": "Felidae",
            "rank": "family",
            "parent_id": 41573,
            "ancestor_ids": [48460, 1, 2, 355675, 40151, 848317, 41573],
        },
        {
            "taxon_id": 41944,
            "name": "Felis",
            "rank": "genus",
            "parent_id": 541791,
            "ancestor_ids": [48460, 1, 2, 355675, 40151, 41573, 9681, 541791],
        },
        {
            "taxon_id": 118552,
            "name": "Felis catus",
            "rank": "species",
            "parent_id": 41944,
            "ancestor_ids": "{48460,1,2,355675,40151,41573,9681,541791,41944}",
        },
    ]


@pytest.fixture
def felidae_outline():
    return FELIDAE_OUTLINE


@pytest.fixture
def felidae_forest():
    return parse_outline(FELIDAE_OUTLINE)
