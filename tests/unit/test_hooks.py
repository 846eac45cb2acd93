"""Unit tests for lifecycle phases and the hook registry."""

from __future__ import annotations

import pytest

from stackforge.core.hooks import PIPELINE, HookTiming, LifecycleHooks, Phase


class TestPipeline:
    def test_phase_order(self):
        assert PIPELINE[0] is Phase.VALIDATE
        assert PIPELINE.index(Phase.COMPILE_EVENTS) < PIPELINE.index(Phase.COMPILE_FUNCTIONS)
        assert PIPELINE.index(Phase.PACKAGE) < PIPELINE.index(Phase.UPLOAD)
        assert PIPELINE[-1] is Phase.CLEANUP

    def test_hook_names(self):
        hooks = LifecycleHooks()
        before = hooks.before(Phase.UPLOAD, lambda ctx: None)
        on = hooks.register(Phase.UPLOAD, lambda ctx: None)
        assert before.hook_name == "before:deploy:upload"
        assert on.hook_name == "deploy:upload"


class TestRun:
    @pytest.mark.asyncio
    async def test_timings_run_in_order(self):
        hooks = LifecycleHooks()
        seen: list[str] = []
        hooks.after(Phase.PACKAGE, lambda ctx: seen.append("after"))
        hooks.register(Phase.PACKAGE, lambda ctx: seen.append("on-1"))
        hooks.before(Phase.PACKAGE, lambda ctx: seen.append("before"))
        hooks.register(Phase.PACKAGE, lambda ctx: seen.append("on-2"))

        count = await hooks.run(Phase.PACKAGE, object())

        assert seen == ["before", "on-1", "on-2", "after"]
        assert count == 4

    @pytest.mark.asyncio
    async def test_coroutines_are_awaited(self):
        hooks = LifecycleHooks()
        seen: list[object] = []

        async def callback(ctx):
            seen.append(ctx)

        hooks.register(Phase.UPLOAD, callback)
        await hooks.run(Phase.UPLOAD, "ctx")
        assert seen == ["ctx"]

    @pytest.mark.asyncio
    async def test_first_failure_stops_the_phase(self):
        hooks = LifecycleHooks()
        seen: list[str] = []

        def boom(ctx):
            raise ValueError("boom")

        hooks.register(Phase.UPLOAD, boom)
        hooks.register(Phase.UPLOAD, lambda ctx: seen.append("late"))

        with pytest.raises(ValueError, match="boom"):
            await hooks.run(Phase.UPLOAD, None)
        assert seen == []

    @pytest.mark.asyncio
    async def test_empty_phase(self):
        assert await LifecycleHooks().run(Phase.MONITOR, None) == 0

    def test_registrations_filtered_by_timing(self):
        hooks = LifecycleHooks()
        hooks.before(Phase.UPLOAD, lambda ctx: None, name="x")
        hooks.register(Phase.UPLOAD, lambda ctx: None, name="y")
        names = [r.name for r in hooks.registrations(Phase.UPLOAD, HookTiming.BEFORE)]
        assert names == ["x"]
