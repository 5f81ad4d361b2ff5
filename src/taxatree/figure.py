from __future__ import annotations

"""
Visualization adapter and Plotly figure construction for the Taxatree project.

The adapter draws a forest onto a Surface and keeps it in step with later
builds:

- `attach(surface, forest, options)` lays the forest out and replaces the
  scene, returning a RenderHandle
- `update(handle, forest)` diffs the new layout against the scene by node
  path, so unchanged nodes keep their scene objects
- `detach(handle)` clears the scene and disconnects the handle

After every attach or update a color pass is scheduled one frame plus a
settle window later. It paints nodes with their band color (or participant
color when no rank is known) and gives each link its target node's color
and participant edge classes. `handle.colored` is a future that resolves when
the pass has run. Without a running loop the pass runs immediately.

`build_plotly_figure` turns a colored surface into a Plotly Figure for the
interactive HTML export.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

import pandas as pd
import plotly.graph_objs as go

from .config import NEUTRAL_STROKE, TaxatreeConfig
from .errors import RenderError
from .graph import TaxonNode, iter_forest
from .labels import PARTICIPANTS, decorate_label, participant_color
from .layout import compute_layout, link_curve
from .ranks import color_for_rank
from .surface import SceneLink, SceneNode, Surface

logger = logging.getLogger(__name__)

FIT_MARGIN = 24.0


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------


@dataclass
class RenderHandle:
    """Live connection between a forest and the surface it is drawn on."""

    surface: Surface
    forest: List[TaxonNode]
    layout: pd.DataFrame
    options: Dict[str, Any] = field(default_factory=dict)
    attached: bool = True
    color_passes: int = 0
    colored: Optional[asyncio.Future] = None
    _color_timer: Optional[asyncio.TimerHandle] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def node_color(rank: str, participant: Optional[str]) -> Optional[str]:
    """Band color when the rank is known, else the participant color."""
    return color_for_rank(rank) or participant_color(participant)


def _edge_classes(participant: Optional[str]) -> Set[str]:
    meta = PARTICIPANTS.get(participant or "")
    classes = {"link"}
    if meta:
        classes.update(meta.edge_class.split())
    return classes


def _scene_node(path: str, row: pd.Series) -> SceneNode:
    return SceneNode(
        path=path,
        name=row["name"],
        label=decorate_label(row["name"], row["rank"], row["participant"]),
        x=float(row["x"]),
        y=float(row["y"]),
        width=float(row["width"]),
        height=float(row["height"]),
        depth=int(row["depth"]),
        rank=row["rank"],
        participant=row["participant"],
    )


def _fit_transform(surface: Surface) -> None:
    bbox = surface.content_bbox()
    if bbox is None:
        return
    x0, y0, x1, y1 = bbox
    span_x = max(x1 - x0, 1.0)
    span_y = max(y1 - y0, 1.0)
    k = min(
        (surface.width - 2 * FIT_MARGIN) / span_x,
        (surface.height - 2 * FIT_MARGIN) / span_y,
        2.0,
    )
    k = max(k, 0.05)
    tx = FIT_MARGIN - k * x0
    ty = (surface.height - k * span_y) / 2.0 - k * y0
    surface.set_transform([[k, 0.0, tx], [0.0, k, ty], [0.0, 0.0, 1.0]])


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class VisualizationAdapter:
    """Draws forests onto surfaces and runs the post-layout color pass."""

    def __init__(self, cfg: Optional[TaxatreeConfig] = None) -> None:
        self.cfg = cfg or TaxatreeConfig()

    # ------------------------------------------------------------------
    # Scene construction
    # ------------------------------------------------------------------

    def _layout(self, forest: Sequence[TaxonNode]) -> pd.DataFrame:
        if not forest or not any(True for _ in iter_forest(forest)):
            raise RenderError("The forest has no nodes to draw")
        return compute_layout(forest, self.cfg)

    def _link_points(self, parent: SceneNode, child: SceneNode):
        return link_curve(parent.circle_center, (child.x, child.y), self.cfg.curve_samples)

    def attach(
        self,
        surface: Surface,
        forest: Sequence[TaxonNode],
        options: Optional[Dict[str, Any]] = None,
    ) -> RenderHandle:
        """
        Draw a forest onto a surface, replacing whatever it showed.

        Options
        -------
        fit : bool, default True
            Reset the pan/zoom transform so the whole tree is visible.

        Raises RenderError for an empty forest.
        """
        options = dict(options or {})
        layout = self._layout(forest)

        with surface.batch():
            surface.clear_notice()
            surface.clear()
            for path, row in layout.iterrows():
                surface.add_node(_scene_node(path, row))
            for path, row in layout.iterrows():
                if row["parent"] is None:
                    continue
                parent = surface.nodes[row["parent"]]
                child = surface.nodes[path]
                surface.add_link(
                    SceneLink(
                        source=parent.path,
                        target=child.path,
                        points=self._link_points(parent, child),
                        stroke=NEUTRAL_STROKE,
                    )
                )
            if options.get("fit", True):
                _fit_transform(surface)

        handle = RenderHandle(
            surface=surface,
            forest=list(forest),
            layout=layout,
            options=options,
        )
        logger.info(
            "Attached forest with %d nodes and %d links",
            len(surface.nodes),
            len(surface.links),
        )
        self._schedule_color_pass(handle)
        return handle

    def update(self, handle: RenderHandle, forest: Sequence[TaxonNode]) -> None:
        """
        Bring an attached handle in line with a new forest.

        Nodes are matched by path. Matching scene nodes are moved and
        relabeled in place, missing ones removed and new ones added.
        """
        if not handle.attached:
            raise RenderError("Cannot update a detached render handle")

        layout = self._layout(forest)
        surface = handle.surface
        old_paths = set(surface.nodes)
        new_paths = set(layout.index)

        with surface.batch():
            surface.clear_notice()
            for path in old_paths - new_paths:
                surface.remove_node(path)

            for path, row in layout.iterrows():
                existing = surface.nodes.get(path)
                if existing is None:
                    surface.add_node(_scene_node(path, row))
                    continue
                fresh = _scene_node(path, row)
                existing.label = fresh.label
                existing.x, existing.y = fresh.x, fresh.y
                existing.width, existing.height = fresh.width, fresh.height
                existing.depth = fresh.depth
                existing.rank, existing.participant = fresh.rank, fresh.participant

            wanted = {
                (row["parent"], path)
                for path, row in layout.iterrows()
                if row["parent"] is not None
            }
            for key in set(surface.links) - wanted:
                surface.remove_link(key)
            for source, target in wanted:
                points = self._link_points(surface.nodes[source], surface.nodes[target])
                link = surface.links.get((source, target))
                if link is None:
                    surface.add_link(
                        SceneLink(source=source, target=target, points=points, stroke=NEUTRAL_STROKE)
                    )
                else:
                    link.points = points

        handle.forest = list(forest)
        handle.layout = layout
        logger.info(
            "Updated render: %d added, %d removed, %d kept",
            len(new_paths - old_paths),
            len(old_paths - new_paths),
            len(new_paths & old_paths),
        )
        self._schedule_color_pass(handle)

    def detach(self, handle: RenderHandle) -> None:
        """Clear the surface and disconnect the handle."""
        if handle._color_timer is not None:
            handle._color_timer.cancel()
            handle._color_timer = None
        if handle.colored is not None and not handle.colored.done():
            handle.colored.cancel()
        if handle.attached:
            handle.surface.clear()
        handle.attached = False
        logger.debug("Detached render handle")

    # ------------------------------------------------------------------
    # Color pass
    # ------------------------------------------------------------------

    def apply_colors(self, handle: RenderHandle) -> int:
        """
        Paint nodes and links of an attached handle.

        Returns the number of scene objects whose style changed. A second
        pass over an unchanged scene changes nothing.
        """
        if not handle.attached:
            return 0

        surface = handle.surface
        changed = 0
        with surface.batch():
            for path, node in surface.nodes.items():
                color = node_color(node.rank, node.participant)
                meta = PARTICIPANTS.get(node.participant or "")
                classes = {"node"} | ({meta.node_class} if meta else set())
                changed += surface.style_node(path, color, color, classes)

            for key, link in surface.links.items():
                target = surface.nodes[link.target]
                stroke = node_color(target.rank, target.participant) or NEUTRAL_STROKE
                changed += surface.style_link(key, stroke, _edge_classes(target.participant))

        handle.color_passes += 1
        logger.debug("Color pass %d changed %d objects", handle.color_passes, changed)
        return changed

    def _schedule_color_pass(self, handle: RenderHandle) -> None:
        loop = _running_loop()
        if loop is None:
            self.apply_colors(handle)
            return

        if handle._color_timer is not None:
            handle._color_timer.cancel()
        if handle.colored is None or handle.colored.done():
            handle.colored = loop.create_future()

        delay = (self.cfg.frame_ms + self.cfg.settle_ms) / 1000.0
        handle._color_timer = loop.call_later(delay, self._run_color_pass, handle)

    def _run_color_pass(self, handle: RenderHandle) -> None:
        handle._color_timer = None
        future = handle.colored
        try:
            self.apply_colors(handle)
        except Exception as exc:
            logger.exception("Color pass failed")
            if future is not None and not future.done():
                future.set_exception(RenderError(f"Color pass failed: {exc}"))
            return
        if future is not None and not future.done():
            future.set_result(handle.color_passes)


# ---------------------------------------------------------------------------
# Plotly figure
# ---------------------------------------------------------------------------


def _build_edge_traces(surface: Surface) -> List[go.Scatter]:
    """
    Build one line trace per stroke color.

    Links are drawn as their sampled curves, connectors as straight
    underlines, each separated by None breaks.
    """
    by_stroke: Dict[str, Dict[str, list]] = {}

    def bucket(stroke: Optional[str]) -> Dict[str, list]:
        return by_stroke.setdefault(stroke or NEUTRAL_STROKE, {"x": [], "y": []})

    for link in surface.links.values():
        b = bucket(link.stroke)
        b["x"].extend(link.points[:, 0].tolist() + [None])
        b["y"].extend(link.points[:, 1].tolist() + [None])

    for node in surface.nodes.values():
        b = bucket(node.connector_stroke)
        seg = node.connector()
        b["x"].extend(seg[:, 0].tolist() + [None])
        b["y"].extend(seg[:, 1].tolist() + [None])

    traces = []
    for stroke, coords in by_stroke.items():
        traces.append(
            go.Scatter(
                x=coords["x"],
                y=coords["y"],
                mode="lines",
                line=dict(width=1.5, color=stroke),
                hoverinfo="skip",
                name=stroke,
                showlegend=False,
            )
        )
    return traces


def _build_node_trace(surface: Surface, cfg: TaxatreeConfig) -> go.Scatter:
    """
    Build the node trace: circles at connector ends with labels above.

    customdata carries the node path so client code can map clicks back to
    the outline.
    """
    node_x = []
    node_y = []
    node_text = []
    hover_text = []
    node_color = []
    paths = []

    for node in surface.nodes.values():
        cx, cy = node.circle_center
        node_x.append(cx)
        node_y.append(cy)
        node_text.append(node.name)
        hover_parts = [node.name]
        if node.rank:
            hover_parts.append(f"Rank: {node.rank}")
        if node.participant:
            hover_parts.append(f"Set: {PARTICIPANTS[node.participant].description}")
        hover_text.append("<br>".join(hover_parts))
        node_color.append(node.circle_fill or NEUTRAL_STROKE)
        paths.append(node.path)

    return go.Scatter(
        x=node_x,
        y=node_y,
        mode="markers+text",
        text=node_text,
        textposition="top left",
        textfont=dict(color=cfg.text_color(), size=12),
        hovertext=hover_text,
        hoverinfo="text",
        marker=dict(size=8, color=node_color, line=dict(width=1, color=cfg.background_color())),
        customdata=paths,
        name="taxa",
    )


def _build_layout(cfg: TaxatreeConfig) -> go.Layout:
    """
    Build the Plotly Layout.

    Axes are hidden and locked to equal scale; y is reversed to match
    screen coordinates.
    """
    return go.Layout(
        title=dict(text=cfg.plot_title, x=0.5),
        showlegend=cfg.show_legend,
        hovermode="closest",
        margin=dict(b=20, l=20, r=20, t=40),
        paper_bgcolor=cfg.background_color(),
        plot_bgcolor=cfg.background_color(),
        xaxis=dict(
            showgrid=False,
            zeroline=False,
            showticklabels=False,
            scaleanchor="y",
            scaleratio=1.0,
        ),
        yaxis=dict(
            showgrid=False,
            zeroline=False,
            showticklabels=False,
            autorange="reversed",
        ),
        dragmode="pan",
    )


def build_plotly_figure(surface: Surface, cfg: Optional[TaxatreeConfig] = None) -> go.Figure:
    """
    Build a Plotly figure from a surface scene.

    Parameters
    ----------
    surface
        Surface holding an attached (ideally colored) scene.
    cfg
        TaxatreeConfig with plot title, theme and legend options.

    Returns
    -------
    plotly.graph_objs.Figure
    """
    cfg = cfg or TaxatreeConfig()
    if not surface.nodes:
        raise RenderError("The surface has no nodes to plot")

    logger.info(
        "Building Plotly figure for scene with %d nodes and %d links",
        len(surface.nodes),
        len(surface.links),
    )

    traces = _build_edge_traces(surface)
    traces.append(_build_node_trace(surface, cfg))
    fig = go.Figure(data=traces, layout=_build_layout(cfg))

    logger.info("Plotly figure construction complete")
    return fig
