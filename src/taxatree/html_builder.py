from __future__ import annotations

"""
HTML builder for the Taxatree project.

This module provides the pipeline that:

1. Builds a forest from rows, or parses one from outline text
2. Draws it onto an off-screen Surface and runs the color pass
3. Constructs a Plotly figure from the scene
4. Wraps the figure JSON and the raw outline into a standalone HTML document

The document loads Plotly from its CDN, so it needs no other files. Pressing
"D" toggles a dark background.

Main public entry points:
    build_taxatree_html(rows=None, outline=None, base_id=None, cfg=None) -> str
    export_interactive_document(outline, surface=None, cfg=None, title=None) -> bytes
"""

import html
import logging
from typing import Iterable, Optional

from .config import TaxatreeConfig
from .data_io import RowLike
from .errors import ExportError
from .figure import VisualizationAdapter, build_plotly_figure
from .graph import build_forest
from .outline import parse_outline
from .surface import Surface

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# HTML template
# ---------------------------------------------------------------------------

_HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>{title}</title>
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <!-- Plotly from CDN -->
  <script src="https://cdn.plot.ly/plotly-2.35.2.min.js"></script>
  <style>
    html, body {{
      margin: 0;
      padding: 0;
      height: 100%;
      font-family: system-ui, -apple-system, BlinkMacSystemFont, "Segoe UI",
                   sans-serif;
      background: #ffffff;
      color: #111827;
    }}
    body.dark {{
      background: #1d1f20;
      color: #f8fafc;
    }}
    #taxatree-plot {{
      height: 100vh;
      width: 100%;
    }}
    #hint {{
      position: fixed;
      right: 12px;
      bottom: 8px;
      font-size: 11px;
      color: #6b7280;
    }}
  </style>
</head>
<body class="{body_class}">
  <div id="taxatree-plot"></div>
  <div id="hint">Press D to toggle dark mode</div>

  <!-- Raw outline the tree was built from -->
  <script id="outline-data" type="text/plain">
{outline}
  </script>

  <!-- Serialized Plotly figure -->
  <script id="plot-data" type="application/json">
{plot_json}
  </script>

  <script>
    (function () {{
      var fig = JSON.parse(document.getElementById("plot-data").textContent);
      var target = document.getElementById("taxatree-plot");
      Plotly.newPlot(target, fig.data, fig.layout, {{responsive: true, scrollZoom: true}});

      function applyTheme(dark) {{
        var bg = dark ? "#1d1f20" : "#ffffff";
        var fg = dark ? "#f8fafc" : "#111827";
        document.body.classList.toggle("dark", dark);
        Plotly.relayout(target, {{paper_bgcolor: bg, plot_bgcolor: bg, "font.color": fg}});
        Plotly.restyle(target, {{"textfont.color": fg}});
      }}

      document.addEventListener("keydown", function (ev) {{
        if (ev.key === "d" || ev.key === "D") {{
          applyTheme(!document.body.classList.contains("dark"));
        }}
      }});
    }})();
  </script>
</body>
</html>
"""


def _escape_script(text: str) -> str:
    """Keep embedded text from closing its <script> element early."""
    return text.replace("</", "<\\/")


# ---------------------------------------------------------------------------
# Pipeline orchestration
# ---------------------------------------------------------------------------


def render_offscreen(outline: str, cfg: TaxatreeConfig, forest=None) -> Surface:
    """
    Draw a forest onto a fresh Surface with colors applied.

    The forest is parsed from outline when not given.
    """
    if forest is None:
        forest = parse_outline(outline, cfg.max_outline_depth)
    surface = Surface(cfg.surface_width, cfg.surface_height, cfg.theme)
    adapter = VisualizationAdapter(cfg)
    handle = adapter.attach(surface, forest)
    adapter.apply_colors(handle)
    return surface


def _figure_to_html(fig, outline: str, cfg: TaxatreeConfig, title: str) -> str:
    """
    Serialize a Plotly figure and wrap it in the HTML template.
    """
    plot_json_str = _escape_script(fig.to_json())

    # Indent for readability inside the script tag
    plot_json_indented = "\n".join(
        "    " + line for line in plot_json_str.splitlines()
    )

    return _HTML_TEMPLATE.format(
        title=html.escape(title),
        body_class="dark" if cfg.theme == "dark" else "",
        outline=_escape_script(outline),
        plot_json=plot_json_indented,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def export_interactive_document(
    outline: str,
    surface: Optional[Surface] = None,
    cfg: Optional[TaxatreeConfig] = None,
    title: Optional[str] = None,
) -> bytes:
    """
    Build a standalone interactive HTML document for a tree.

    Parameters
    ----------
    outline
        The raw outline the tree was built from; it is embedded verbatim.
    surface
        An already rendered surface to plot. When None the outline is parsed
        and drawn off screen.
    cfg
        Optional TaxatreeConfig for title and theme.
    title
        Document title; defaults to cfg.plot_title.

    Returns
    -------
    bytes
        UTF-8 encoded HTML.
    """
    cfg = cfg or TaxatreeConfig()
    if surface is None:
        if not outline or not outline.strip():
            raise ExportError("Cannot build an interactive document from an empty outline")
        surface = render_offscreen(outline, cfg)

    fig = build_plotly_figure(surface, cfg)
    document = _figure_to_html(fig, outline, cfg, title or cfg.plot_title)

    logger.info("Interactive document built (%d characters)", len(document))
    return document.encode("utf-8")


def build_taxatree_html(
    rows: Optional[Iterable[RowLike]] = None,
    outline: Optional[str] = None,
    base_id: Optional[int] = None,
    cfg: Optional[TaxatreeConfig] = None,
) -> str:
    """
    Run the full Taxatree pipeline and return a standalone HTML document
    as a string.

    Exactly one of rows or outline should be given. Rows are built into a
    forest first; the resulting outline is embedded in the document.
    """
    if cfg is None:
        cfg = TaxatreeConfig()

    logger.info("Starting Taxatree HTML build with config: %s", cfg)

    forest = None
    if rows is not None:
        result = build_forest(rows, base_id, cfg)
        outline, forest = result.outline, result.forest
    if not outline:
        raise ExportError("Nothing to build: no rows or outline given")

    surface = render_offscreen(outline, cfg, forest)
    html_doc = export_interactive_document(outline, surface, cfg).decode("utf-8")

    logger.info("Taxatree HTML build complete")
    return html_doc
