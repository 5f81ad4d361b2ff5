"""
Tests for the render scheduler.

Tests cover:
    - Debounce: rapid requests collapse into one render
    - Single flight: requests firing mid-render are dropped, not queued
    - Cooldown after a render
    - Failure isolation and logging
    - Inline rendering without an event loop
"""

import asyncio
import logging

from taxatree.scheduler import RenderScheduler, RenderState


# ============================================================
# EVENT LOOP BEHAVIOR
# ============================================================

class TestDebounce:

    def test_rapid_requests_render_once(self, fast_cfg):
        calls = []

        async def scenario():
            scheduler = RenderScheduler(calls.append, fast_cfg)
            for _ in range(3):
                assert scheduler.request_render("tree-1")
            assert scheduler.state("tree-1") is RenderState.SCHEDULED
            assert scheduler.is_pending("tree-1")
            await scheduler.wait_idle(timeout=2)
            return scheduler

        scheduler = asyncio.run(scenario())
        assert calls == ["tree-1"]
        assert scheduler.state("tree-1") is RenderState.IDLE

    def test_ids_are_independent(self, fast_cfg):
        calls = []

        async def scenario():
            scheduler = RenderScheduler(calls.append, fast_cfg)
            scheduler.request_render("tree-1")
            scheduler.request_render("tree-2")
            await scheduler.wait_idle(timeout=2)

        asyncio.run(scenario())
        assert sorted(calls) == ["tree-1", "tree-2"]

    def test_cancel_discards_pending_request(self, fast_cfg):
        calls = []

        async def scenario():
            scheduler = RenderScheduler(calls.append, fast_cfg)
            scheduler.request_render("tree-1", delay_ms=20)
            scheduler.cancel("tree-1")
            await asyncio.sleep(0.05)
            return scheduler

        scheduler = asyncio.run(scenario())
        assert calls == []
        assert scheduler.state("tree-1") is RenderState.IDLE


class TestSingleFlight:

    def test_request_during_render_is_dropped(self, fast_cfg):
        calls = []

        async def scenario():
            started = asyncio.Event()
            release = asyncio.Event()

            async def render(tree_id):
                calls.append(tree_id)
                started.set()
                await release.wait()

            scheduler = RenderScheduler(render, fast_cfg)
            scheduler.request_render("tree-1", delay_ms=0)
            await asyncio.wait_for(started.wait(), 1)
            assert scheduler.state("tree-1") is RenderState.RENDERING

            scheduler.request_render("tree-1", delay_ms=0)
            assert scheduler.state("tree-1") is RenderState.RENDERING
            await asyncio.sleep(0.02)
            assert scheduler.dropped == 1

            release.set()
            await scheduler.wait_idle(timeout=2)
            return scheduler

        scheduler = asyncio.run(scenario())
        assert calls == ["tree-1"]
        assert scheduler.state("tree-1") is RenderState.IDLE

    def test_cooldown_keeps_rendering_state(self, fast_cfg):
        fast_cfg.cooldown_ms = 200
        calls = []

        async def scenario():
            scheduler = RenderScheduler(calls.append, fast_cfg)
            scheduler.request_render("tree-1", delay_ms=0)
            await asyncio.sleep(0.03)
            assert calls == ["tree-1"]
            assert scheduler.state("tree-1") is RenderState.RENDERING

            scheduler.request_render("tree-1", delay_ms=0)
            await asyncio.sleep(0.03)
            assert scheduler.dropped == 1

            await scheduler.wait_idle(timeout=2)
            return scheduler

        scheduler = asyncio.run(scenario())
        assert calls == ["tree-1"]
        assert scheduler.state("tree-1") is RenderState.IDLE


class TestFailures:

    def test_render_exception_is_logged_and_contained(self, fast_cfg, caplog):
        def render(tree_id):
            raise ValueError("boom")

        async def scenario():
            scheduler = RenderScheduler(render, fast_cfg)
            scheduler.request_render("tree-1", delay_ms=0)
            await scheduler.wait_idle(timeout=2)
            return scheduler

        with caplog.at_level(logging.ERROR, logger="taxatree.scheduler"):
            scheduler = asyncio.run(scenario())

        assert "Render for tree-1 failed" in caplog.text
        assert scheduler.state("tree-1") is RenderState.IDLE

    def test_closed_scheduler_refuses_requests(self, fast_cfg):
        calls = []
        scheduler = RenderScheduler(calls.append, fast_cfg)
        scheduler.close()
        assert scheduler.request_render("tree-1") is False
        assert calls == []


# ============================================================
# INLINE BEHAVIOR
# ============================================================

class TestInline:

    def test_renders_immediately_without_loop(self, cfg):
        calls = []
        scheduler = RenderScheduler(calls.append, cfg)
        assert scheduler.request_render("tree-1")
        assert calls == ["tree-1"]
        assert scheduler.state("tree-1") is RenderState.IDLE

    def test_inline_async_render(self, cfg):
        calls = []

        async def render(tree_id):
            await asyncio.sleep(0)
            calls.append(tree_id)

        RenderScheduler(render, cfg).request_render("tree-1")
        assert calls == ["tree-1"]

    def test_inline_reentrant_request_is_dropped(self, cfg):
        calls = []
        holder = {}

        def render(tree_id):
            calls.append(tree_id)
            assert holder["scheduler"].request_render(tree_id) is False

        scheduler = RenderScheduler(render, cfg)
        holder["scheduler"] = scheduler
        scheduler.request_render("tree-1")
        assert calls == ["tree-1"]
        assert scheduler.dropped == 1

    def test_inline_exception_is_contained(self, cfg, caplog):
        def render(tree_id):
            raise RuntimeError("boom")

        with caplog.at_level(logging.ERROR, logger="taxatree.scheduler"):
            RenderScheduler(render, cfg).request_render("tree-1")
        assert "Render for tree-1 failed" in caplog.text
