from __future__ import annotations

"""
Rendering surface for the Taxatree project.

The Surface is the canvas-like target the visualization adapter draws into.
It holds a scene of nodes and links in content coordinates, a pan/zoom
transform that maps content coordinates to screen pixels, and an optional
inline notice shown instead of a tree.

Observers registered with `observe` are called with one of

- "structure"   nodes or links were added or removed
- "attributes"  colors or classes changed
- "viewport"    pan, zoom or resize

The mini-map and the raster exporter read everything they need from here.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

import numpy as np

from .config import THEME_BACKGROUND

logger = logging.getLogger(__name__)

BBox = Tuple[float, float, float, float]
LinkKey = Tuple[str, str]
Observer = Callable[[str], None]

CIRCLE_RADIUS = 4.0


# ---------------------------------------------------------------------------
# Scene objects
# ---------------------------------------------------------------------------


@dataclass
class SceneNode:
    """
    A drawn node.

    (x, y) is the left end of the connector underline. The label sits above
    the underline and the circle at its right end.
    """

    path: str
    name: str
    label: str
    x: float
    y: float
    width: float
    height: float
    depth: int = 0
    rank: str = ""
    participant: Optional[str] = None
    connector_stroke: Optional[str] = None
    circle_fill: Optional[str] = None
    classes: Set[str] = field(default_factory=set)

    @property
    def circle_center(self) -> Tuple[float, float]:
        return (self.x + self.width, self.y)

    def connector(self) -> np.ndarray:
        """Underline endpoints as a 2x2 array."""
        return np.array([[self.x, self.y], [self.x + self.width, self.y]], dtype=float)

    def bbox(self) -> BBox:
        return (
            self.x,
            self.y - self.height,
            self.x + self.width + CIRCLE_RADIUS,
            self.y + CIRCLE_RADIUS,
        )


@dataclass
class SceneLink:
    """A drawn link from a parent node to a child node."""

    source: str
    target: str
    points: np.ndarray
    stroke: Optional[str] = None
    classes: Set[str] = field(default_factory=set)

    @property
    def key(self) -> LinkKey:
        return (self.source, self.target)


# ---------------------------------------------------------------------------
# Surface
# ---------------------------------------------------------------------------


class Surface:
    """Scene container with a pan/zoom transform and change notification."""

    def __init__(self, width: float = 1200.0, height: float = 700.0, theme: str = "light") -> None:
        self.width = float(width)
        self.height = float(height)
        self.theme = theme
        self.nodes: Dict[str, SceneNode] = {}
        self.links: Dict[LinkKey, SceneLink] = {}
        self.transform: np.ndarray = np.eye(3)
        self.notice: Optional[str] = None
        self._observers: List[Observer] = []
        self._batch_depth = 0
        self._batched: List[str] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def observe(self, callback: Observer) -> Callable[[], None]:
        """Register callback for changes; returns a function that removes it."""
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _notify(self, kind: str) -> None:
        if self._batch_depth:
            if kind not in self._batched:
                self._batched.append(kind)
            return
        for callback in list(self._observers):
            callback(kind)

    @contextmanager
    def batch(self) -> Iterator["Surface"]:
        """Coalesce notifications until the block exits."""
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if not self._batch_depth:
                kinds, self._batched = self._batched, []
                for kind in kinds:
                    self._notify(kind)

    # ------------------------------------------------------------------
    # Scene mutation
    # ------------------------------------------------------------------

    def add_node(self, node: SceneNode) -> None:
        self.nodes[node.path] = node
        self._notify("structure")

    def remove_node(self, path: str) -> None:
        if self.nodes.pop(path, None) is not None:
            for key in [k for k in self.links if path in k]:
                del self.links[key]
            self._notify("structure")

    def add_link(self, link: SceneLink) -> None:
        self.links[link.key] = link
        self._notify("structure")

    def remove_link(self, key: LinkKey) -> None:
        if self.links.pop(key, None) is not None:
            self._notify("structure")

    def style_node(
        self,
        path: str,
        connector_stroke: Optional[str],
        circle_fill: Optional[str],
        classes: Optional[Set[str]] = None,
    ) -> bool:
        """Set node colors; returns True when anything changed."""
        node = self.nodes[path]
        new_classes = set(classes) if classes is not None else node.classes
        if (
            node.connector_stroke == connector_stroke
            and node.circle_fill == circle_fill
            and node.classes == new_classes
        ):
            return False
        node.connector_stroke = connector_stroke
        node.circle_fill = circle_fill
        node.classes = new_classes
        self._notify("attributes")
        return True

    def style_link(self, key: LinkKey, stroke: Optional[str], classes: Set[str]) -> bool:
        """Set link stroke and classes; returns True when anything changed."""
        link = self.links[key]
        if link.stroke == stroke and link.classes == classes:
            return False
        link.stroke = stroke
        link.classes = set(classes)
        self._notify("attributes")
        return True

    def clear(self) -> None:
        """Remove every node and link."""
        if self.nodes or self.links:
            self.nodes.clear()
            self.links.clear()
            self._notify("structure")

    # ------------------------------------------------------------------
    # Notice
    # ------------------------------------------------------------------

    def show_notice(self, message: str) -> None:
        self.notice = message
        self._notify("structure")

    def clear_notice(self) -> None:
        if self.notice is not None:
            self.notice = None
            self._notify("structure")

    # ------------------------------------------------------------------
    # Viewport
    # ------------------------------------------------------------------

    def set_transform(self, matrix: np.ndarray) -> None:
        matrix = np.asarray(matrix, dtype=float)
        if matrix.shape != (3, 3):
            raise ValueError("transform must be a 3x3 matrix")
        self.transform = matrix
        self._notify("viewport")

    def pan(self, dx: float, dy: float) -> None:
        shift = np.array([[1.0, 0.0, dx], [0.0, 1.0, dy], [0.0, 0.0, 1.0]])
        self.set_transform(shift @ self.transform)

    def zoom(self, k: float, cx: float = 0.0, cy: float = 0.0) -> None:
        """Scale by k around the screen point (cx, cy)."""
        if k <= 0:
            raise ValueError("zoom factor must be positive")
        about = np.array(
            [[k, 0.0, cx - k * cx], [0.0, k, cy - k * cy], [0.0, 0.0, 1.0]]
        )
        self.set_transform(about @ self.transform)

    def reset_view(self) -> None:
        self.set_transform(np.eye(3))

    def resize(self, width: float, height: float) -> None:
        self.width = float(width)
        self.height = float(height)
        self._notify("viewport")

    def screen_to_content(self, points: np.ndarray) -> np.ndarray:
        """Map an (n, 2) array of screen points into content coordinates."""
        pts = np.atleast_2d(np.asarray(points, dtype=float))
        homogeneous = np.hstack([pts, np.ones((pts.shape[0], 1))])
        mapped = homogeneous @ np.linalg.inv(self.transform).T
        return mapped[:, :2]

    def visible_content_rect(self) -> BBox:
        """Content-space rectangle currently visible on screen."""
        corners = self.screen_to_content(np.array([[0.0, 0.0], [self.width, self.height]]))
        x0, y0 = corners.min(axis=0)
        x1, y1 = corners.max(axis=0)
        return (float(x0), float(y0), float(x1), float(y1))

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def content_bbox(self, padding: float = 0.0) -> Optional[BBox]:
        """
        Tight bounding box of every node and link in content coordinates.

        Returns None for an empty scene.
        """
        boxes = [node.bbox() for node in self.nodes.values()]
        for link in self.links.values():
            if len(link.points):
                lo = link.points.min(axis=0)
                hi = link.points.max(axis=0)
                boxes.append((lo[0], lo[1], hi[0], hi[1]))

        if not boxes:
            return None

        arr = np.asarray(boxes, dtype=float)
        return (
            float(arr[:, 0].min() - padding),
            float(arr[:, 1].min() - padding),
            float(arr[:, 2].max() + padding),
            float(arr[:, 3].max() + padding),
        )

    def background_color(self) -> str:
        return THEME_BACKGROUND.get(self.theme, THEME_BACKGROUND["light"])
