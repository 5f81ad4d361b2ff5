from __future__ import annotations

"""
Mini-map synchronization for the Taxatree project.

A MiniMapSynchronizer keeps a reduced copy of a surface: every link and
connector without labels, the content bounding box as its view box, and a
rectangle marking the part of the content currently visible in the main
view.

It subscribes to the surface's change notifications. Bursts of changes
during drags and zooms are debounced through `loop.call_later`; without a
running loop each change syncs immediately.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

import numpy as np

from .config import NEUTRAL_STROKE, TaxatreeConfig
from .surface import BBox, SceneLink, Surface

logger = logging.getLogger(__name__)


@dataclass
class MiniLink:
    source: str
    target: str
    points: np.ndarray
    stroke: str
    classes: Set[str] = field(default_factory=set)


@dataclass
class MiniConnector:
    path: str
    points: np.ndarray
    stroke: str


def resolve_stroke(link: SceneLink, surface: Surface) -> str:
    """
    Stroke to draw a mini link with.

    A missing or neutral stroke falls back to the target node's connector
    color.
    """
    stroke = link.stroke
    if stroke and stroke.lower() != NEUTRAL_STROKE:
        return stroke
    target = surface.nodes.get(link.target)
    if target is not None and target.connector_stroke:
        return target.connector_stroke
    return NEUTRAL_STROKE


class MiniMapSynchronizer:
    """Mirror of a surface's links, connectors and viewport."""

    def __init__(self, surface: Surface, cfg: Optional[TaxatreeConfig] = None) -> None:
        self.surface = surface
        self.cfg = cfg or TaxatreeConfig()
        self.view_box: Optional[BBox] = None
        self.viewport: Optional[BBox] = None
        self.links: List[MiniLink] = []
        self.connectors: List[MiniConnector] = []
        self.sync_count = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        """Subscribe to the surface and sync once."""
        if self._unsubscribe is None:
            self._unsubscribe = self.surface.observe(self._on_change)
        self.sync()

    def _on_change(self, kind: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.sync()
            return

        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(
            self.cfg.minimap_debounce_ms / 1000.0, self._flush
        )
        logger.debug("Mini-map sync deferred after %s change", kind)

    def _flush(self) -> None:
        self._timer = None
        self.sync()

    def sync(self) -> None:
        """Recompute view box, mini links, connectors and viewport."""
        surface = self.surface
        self.view_box = surface.content_bbox()

        self.links = [
            MiniLink(
                source=link.source,
                target=link.target,
                points=link.points.copy(),
                stroke=resolve_stroke(link, surface),
                classes=set(link.classes) - {"link"},
            )
            for link in surface.links.values()
        ]
        self.connectors = [
            MiniConnector(
                path=node.path,
                points=node.connector(),
                stroke=node.connector_stroke or NEUTRAL_STROKE,
            )
            for node in surface.nodes.values()
        ]
        self.viewport = surface.visible_content_rect() if self.view_box else None
        self.sync_count += 1

    def close(self) -> None:
        """Unsubscribe and drop any pending sync."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        logger.debug("Mini-map closed after %d syncs", self.sync_count)
