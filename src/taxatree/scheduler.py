from __future__ import annotations

"""
Per-tree render scheduling for the Taxatree project.

A RenderScheduler debounces render requests and keeps at most one render in
flight per tree id. Each id moves through

    idle -> scheduled -> rendering -> idle

- `request_render` cancels any pending timer for the id and arms a new one
- when the timer fires while the id is rendering, the request is dropped
  (logged at DEBUG, never queued)
- after a render finishes, successfully or not, the id stays in the
  rendering state for a short cooldown before returning to idle

Timers are asyncio TimerHandles on the running loop. Without a running loop
requests render inline, which keeps the scheduler usable from scripts and
the Flask service.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from .config import TaxatreeConfig

logger = logging.getLogger(__name__)


class RenderState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RENDERING = "rendering"


RenderCallable = Callable[[str], Union[None, Awaitable[Any]]]


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


async def _drain(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class RenderScheduler:
    """
    Debounce and single-flight guard around a render callable.

    Parameters
    ----------
    render
        Callable taking a tree id. It may return an awaitable. Exceptions
        are logged and never propagate out of the scheduler.
    cfg
        TaxatreeConfig providing render_delay_ms and cooldown_ms.
    """

    def __init__(self, render: RenderCallable, cfg: Optional[TaxatreeConfig] = None) -> None:
        self._render = render
        self._cfg = cfg or TaxatreeConfig()
        self._states: Dict[str, RenderState] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._cooldowns: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._closed = False
        self.dropped = 0

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def state(self, tree_id: str) -> RenderState:
        return self._states.get(tree_id, RenderState.IDLE)

    def is_pending(self, tree_id: str) -> bool:
        return tree_id in self._timers

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def request_render(self, tree_id: str, delay_ms: Optional[float] = None) -> bool:
        """
        Ask for a render of tree_id after delay_ms.

        Returns False when the scheduler is closed or an inline render was
        dropped, True otherwise.
        """
        if self._closed:
            logger.debug("Scheduler closed; ignoring render request for %s", tree_id)
            return False

        delay = self._cfg.render_delay_ms if delay_ms is None else delay_ms
        loop = _running_loop()
        if loop is None:
            return self._render_inline(tree_id)

        pending = self._timers.pop(tree_id, None)
        if pending is not None:
            pending.cancel()

        self._timers[tree_id] = loop.call_later(max(delay, 0) / 1000.0, self._fire, tree_id)
        if self.state(tree_id) is not RenderState.RENDERING:
            self._states[tree_id] = RenderState.SCHEDULED

        logger.debug("Render for %s scheduled in %.0f ms", tree_id, delay)
        return True

    def _fire(self, tree_id: str) -> None:
        self._timers.pop(tree_id, None)

        if self.state(tree_id) is RenderState.RENDERING:
            self.dropped += 1
            logger.debug("Render for %s already in flight; dropping request", tree_id)
            return

        self._states[tree_id] = RenderState.RENDERING
        loop = asyncio.get_running_loop()
        self._tasks[tree_id] = loop.create_task(self._run(tree_id))

    async def _run(self, tree_id: str) -> None:
        try:
            result = self._render(tree_id)
            if inspect.isawaitable(result):
                await result
            logger.debug("Render for %s finished", tree_id)
        except Exception:
            logger.exception("Render for %s failed", tree_id)
        finally:
            self._tasks.pop(tree_id, None)
            self._start_cooldown(tree_id)

    def _start_cooldown(self, tree_id: str) -> None:
        cooldown = self._cfg.cooldown_ms
        loop = _running_loop()
        if cooldown <= 0 or loop is None or self._closed:
            self._settle(tree_id)
            return
        self._cooldowns[tree_id] = loop.call_later(cooldown / 1000.0, self._settle, tree_id)

    def _settle(self, tree_id: str) -> None:
        self._cooldowns.pop(tree_id, None)
        if tree_id in self._timers:
            self._states[tree_id] = RenderState.SCHEDULED
        else:
            self._states[tree_id] = RenderState.IDLE

    def _render_inline(self, tree_id: str) -> bool:
        if self.state(tree_id) is RenderState.RENDERING:
            self.dropped += 1
            logger.debug("Render for %s already in flight; dropping request", tree_id)
            return False

        self._states[tree_id] = RenderState.RENDERING
        try:
            result = self._render(tree_id)
            if inspect.isawaitable(result):
                asyncio.run(_drain(result))
        except Exception:
            logger.exception("Render for %s failed", tree_id)
        finally:
            self._states[tree_id] = RenderState.IDLE
        return True

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, tree_id: str) -> None:
        """
        Discard pending work for tree_id.

        A render already in flight is allowed to finish.
        """
        pending = self._timers.pop(tree_id, None)
        if pending is not None:
            pending.cancel()

        cooldown = self._cooldowns.pop(tree_id, None)
        if cooldown is not None:
            cooldown.cancel()

        if tree_id not in self._tasks:
            self._states.pop(tree_id, None)

    def close(self) -> None:
        """Cancel every pending timer and refuse further requests."""
        for tree_id in list(self._timers) + list(self._cooldowns):
            self.cancel(tree_id)
        self._closed = True
        logger.debug("Render scheduler closed")

    async def wait_idle(self, timeout: Optional[float] = None, poll_s: float = 0.005) -> None:
        """
        Wait until no timers, renders or cooldowns are outstanding.

        Raises asyncio.TimeoutError if timeout seconds pass first.
        """

        async def _poll() -> None:
            while self._timers or self._tasks or self._cooldowns:
                await asyncio.sleep(poll_s)

        await asyncio.wait_for(_poll(), timeout)
