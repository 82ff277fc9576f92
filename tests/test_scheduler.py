"""Tests for the periodic scheduler and the change debouncer."""

from __future__ import annotations

import asyncio

from antigravity_sync.sync.scheduler import AutoSyncScheduler, ChangeDebouncer


class TestAutoSyncScheduler:
    def test_runs_periodically(self):
        calls = []

        async def scenario():
            async def run():
                calls.append(1)

            scheduler = AutoSyncScheduler(run, 0.02, tick=0.005)
            scheduler.start()
            await asyncio.sleep(0.2)
            scheduler.stop()
            await scheduler.wait_stopped()

        asyncio.run(scenario())
        assert len(calls) >= 2

    def test_failure_does_not_stop_timer(self):
        async def scenario():
            async def run():
                raise RuntimeError("network down")

            scheduler = AutoSyncScheduler(run, 0.02, tick=0.005)
            scheduler.start()
            await asyncio.sleep(0.2)
            running = scheduler.running
            scheduler.stop()
            await scheduler.wait_stopped()
            return scheduler.runs, running

        runs, running = asyncio.run(scenario())
        assert runs >= 2
        assert running

    def test_countdown_reports_whole_seconds(self):
        seen = []

        async def scenario():
            async def run():
                pass

            scheduler = AutoSyncScheduler(run, 2.5, on_countdown=seen.append, tick=0.01)
            scheduler.start()
            await asyncio.sleep(0.05)
            scheduler.stop()
            await scheduler.wait_stopped()

        asyncio.run(scenario())
        assert seen
        assert set(seen) == {3}

    def test_countdown_callback_errors_are_contained(self):
        def broken(_seconds):
            raise ValueError("display gone")

        async def scenario():
            calls = []

            async def run():
                calls.append(1)

            scheduler = AutoSyncScheduler(run, 0.02, on_countdown=broken, tick=0.005)
            scheduler.start()
            await asyncio.sleep(0.1)
            scheduler.stop()
            await scheduler.wait_stopped()
            return calls

        assert asyncio.run(scenario())

    def test_trigger_now_runs_immediately_and_reschedules(self):
        async def scenario():
            calls = []

            async def run():
                calls.append(1)

            scheduler = AutoSyncScheduler(run, 60)
            scheduler.start()
            scheduler.trigger_now()
            await asyncio.sleep(0.05)
            remaining = scheduler.seconds_until_next()
            scheduler.stop()
            await scheduler.wait_stopped()
            return calls, remaining

        calls, remaining = asyncio.run(scenario())
        assert calls == [1]
        assert remaining > 50

    def test_stop_prevents_future_runs(self):
        async def scenario():
            calls = []

            async def run():
                calls.append(1)

            scheduler = AutoSyncScheduler(run, 0.05, tick=0.01)
            scheduler.start()
            scheduler.stop()
            await scheduler.wait_stopped()
            await asyncio.sleep(0.1)
            return calls, scheduler.running, scheduler.seconds_until_next()

        calls, running, remaining = asyncio.run(scenario())
        assert calls == []
        assert not running
        assert remaining is None

    def test_start_twice_keeps_one_timer(self):
        async def scenario():
            scheduler = AutoSyncScheduler(lambda: asyncio.sleep(0), 60)
            scheduler.start()
            first = scheduler._task
            scheduler.start()
            same = scheduler._task is first
            scheduler.stop()
            await scheduler.wait_stopped()
            return same

        assert asyncio.run(scenario())


class TestChangeDebouncer:
    def test_burst_flushes_once(self):
        flushed = []

        async def scenario():
            async def flush(paths):
                flushed.append(paths)

            debouncer = ChangeDebouncer(0.05, flush)
            debouncer.notify("knowledge/a.md")
            await asyncio.sleep(0.02)
            debouncer.notify("knowledge/b.md")
            debouncer.notify("knowledge/a.md")
            await asyncio.sleep(0.15)
            await debouncer.wait_flushed()

        asyncio.run(scenario())
        assert flushed == [{"knowledge/a.md", "knowledge/b.md"}]

    def test_cancel_drops_pending(self):
        flushed = []

        async def scenario():
            async def flush(paths):
                flushed.append(paths)

            debouncer = ChangeDebouncer(0.03, flush)
            debouncer.notify("brain/x.md")
            debouncer.cancel()
            await asyncio.sleep(0.1)
            return debouncer.pending

        pending = asyncio.run(scenario())
        assert flushed == []
        assert pending == set()

    def test_flush_failure_is_logged(self, caplog):
        async def scenario():
            async def flush(paths):
                raise RuntimeError("push failed")

            debouncer = ChangeDebouncer(0.01, flush)
            debouncer.notify("skills/s.md")
            await asyncio.sleep(0.05)
            await debouncer.wait_flushed()

        asyncio.run(scenario())
        assert "Change-triggered push failed" in caplog.text
