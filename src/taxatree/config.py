from __future__ import annotations

"""
Configuration and shared defaults for the Taxatree project.

This module defines:

- Paths to data files relative to the project root
- Timing constants used by the render scheduler, color pass and mini-map
- Layout and export defaults such as raster scale and byte budget

Most code in the package should import configuration values from here rather
than hard coding paths or constants. Rank and band metadata lives in ranks.py.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

# Project root is two levels up from this file.
#   project_root/
#     src/
#       taxatree/
#         config.py
ROOT_DIR: Path = Path(__file__).resolve().parents[2]
DATA_DIR: Path = ROOT_DIR / "data"

# Default row table location
DEFAULT_ROWS_PATH: Path = DATA_DIR / "taxa_rows.csv"


# ---------------------------------------------------------------------------
# Taxonomy input
# ---------------------------------------------------------------------------

# Synthetic universal root ("Life") that upstream ancestor chains start with
SYNTHETIC_ROOT_ID: int = 48460

# Nesting cap for emitted and parsed outlines
DEFAULT_MAX_OUTLINE_DEPTH: int = 32


# ---------------------------------------------------------------------------
# Themes
# ---------------------------------------------------------------------------

THEME_BACKGROUND = {
    "light": "#ffffff",
    "dark": "#1d1f20",
}

THEME_TEXT = {
    "light": "#111827",
    "dark": "#f8fafc",
}

# Default stroke the engine gives links before the color pass runs
NEUTRAL_STROKE: str = "#6b7280"


# ---------------------------------------------------------------------------
# Pipeline configuration
# ---------------------------------------------------------------------------

@dataclass
class TaxatreeConfig:
    """
    Top level configuration object for the Taxatree pipeline.

    Pass this into the builder, adapter, scheduler and exporters so that
    tests, scripts, and the Flask app can reuse the same settings.
    """

    rows_path: Path = DEFAULT_ROWS_PATH
    cache_dir: Optional[Path] = None

    # Row normalization
    synthetic_root_id: int = SYNTHETIC_ROOT_ID
    max_outline_depth: int = DEFAULT_MAX_OUTLINE_DEPTH

    # Render scheduling (milliseconds)
    render_delay_ms: float = 100.0
    rerender_delay_ms: float = 50.0
    tab_shown_delay_ms: float = 80.0
    cooldown_ms: float = 120.0

    # Post-layout color pass: one frame plus a settle window
    frame_ms: float = 16.0
    settle_ms: float = 350.0

    # Mini-map
    minimap_debounce_ms: float = 120.0

    # Surface defaults
    surface_width: float = 1200.0
    surface_height: float = 700.0
    theme: str = "light"

    # Layout geometry (content units)
    level_spacing: float = 80.0
    row_height: float = 28.0
    char_width: float = 7.0
    node_padding: float = 8.0
    curve_samples: int = 16

    # Export
    raster_scale: float = 2.0
    raster_quality: float = 0.92
    share_format: str = "webp"
    share_max_bytes: int = 2_000_000
    include_internal_labels: bool = False
    fallback_root_label: str = "root"

    # Plot and HTML options
    plot_title: str = "Taxatree"
    show_legend: bool = False

    def background_color(self) -> str:
        """Return the solid background color for the active theme."""
        return THEME_BACKGROUND.get(self.theme, THEME_BACKGROUND["light"])

    def text_color(self) -> str:
        """Return the label color for the active theme."""
        return THEME_TEXT.get(self.theme, THEME_TEXT["light"])
