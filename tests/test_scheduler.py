"""
Scheduler and command line tests.
"""

import asyncio

import pytest

from scheduler.app import build_parser
from scheduler.service import IntervalScheduler


class TestIntervalScheduler:
    async def test_fires_until_max_ticks(self):
        calls = []

        async def callback():
            calls.append(1)

        scheduler = IntervalScheduler(callback, interval_seconds=0.01)
        await scheduler.run(max_ticks=3)

        assert len(calls) == 3
        assert scheduler.ticks == 3

    async def test_firings_overlap(self):
        started = []
        release = asyncio.Event()

        async def slow_callback():
            started.append(1)
            await release.wait()

        scheduler = IntervalScheduler(slow_callback, interval_seconds=0.01)
        run = asyncio.create_task(scheduler.run(max_ticks=3))
        while len(started) < 3:
            await asyncio.sleep(0.01)

        assert scheduler.in_flight == 3
        release.set()
        await run
        assert scheduler.in_flight == 0

    async def test_failing_firing_does_not_stop_schedule(self):
        calls = []

        async def callback():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("dispatcher blew up")

        scheduler = IntervalScheduler(callback, interval_seconds=0.01)
        await scheduler.run(max_ticks=3)

        assert len(calls) == 3

    async def test_stop_event_ends_run(self):
        stop_event = asyncio.Event()

        async def callback():
            stop_event.set()

        scheduler = IntervalScheduler(callback, interval_seconds=10)
        await asyncio.wait_for(scheduler.run(stop_event), timeout=1)

        assert scheduler.ticks == 1


class TestParser:
    def test_work_command(self):
        args = build_parser().parse_args(["work", "tenant-a", "S1", "--attempt", "2"])

        assert args.command == "work"
        assert (args.seller_key, args.seller_id, args.attempt) == ("tenant-a", "S1", 2)

    def test_run_command_defaults(self):
        args = build_parser().parse_args(["run", "--ticks", "1"])

        assert args.ticks == 1
        assert args.interval > 0
        assert args.concurrency > 0

    def test_rejects_unknown_status(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["tasks", "--status", "DONE"])

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])
