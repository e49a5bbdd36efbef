"""
Command line entry point for running the pipeline outside of Lambda.

    seller-finances run --interval 60          # schedule + dispatch + in-process workers
    seller-finances dispatch [--local]         # one dispatch cycle
    seller-finances work SELLER_KEY SELLER_ID  # one seller's task
    seller-finances tasks --status FAILED      # inspect the Task Store
"""

import argparse
import asyncio
import json
import signal
from dataclasses import asdict
from typing import List, Optional

from dispatcher.app import build_dispatcher
from shared.db.database import Database
from shared.db.task_store import TaskStore
from shared.schemas.dto import TaskStatus, WorkerInvocation
from shared.services.task_queue import LocalTaskQueue
from shared.utils.configs import scheduler_configs
from shared.utils.helpers import PipelineJSONEncoder
from shared.utils.logger import logger
from task_executor.app import build_executor

from .service import IntervalScheduler


def _print(data):
    print(json.dumps(data, indent=2, cls=PipelineJSONEncoder))


def _local_queue(database: Database, concurrency: int) -> LocalTaskQueue:
    executor = build_executor(database)

    async def handle(invocation: WorkerInvocation):
        outcome = await executor.run_task(
            invocation.seller_key, invocation.seller_id, attempt=invocation.attempt
        )
        logger.info(f"Local worker outcome: {asdict(outcome)}")

    return LocalTaskQueue(handler=handle, concurrency=concurrency)


async def run_schedule(args, database: Database):
    queue = _local_queue(database, args.concurrency)
    dispatcher = build_dispatcher(database, task_queue=queue)
    scheduler = IntervalScheduler(dispatcher.run_cycle, args.interval)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms
            pass

    queue.start()
    try:
        await scheduler.run(stop_event, max_ticks=args.ticks)
        await queue.join()
    finally:
        await queue.stop()


async def run_dispatch(args, database: Database):
    if not args.local:
        _print(await build_dispatcher(database).run_cycle())
        return

    queue = _local_queue(database, args.concurrency)
    queue.start()
    try:
        summary = await build_dispatcher(database, task_queue=queue).run_cycle()
        await queue.join()
    finally:
        await queue.stop()
    _print(summary)


async def run_work(args, database: Database):
    outcome = await build_executor(database).run_task(
        args.seller_key, args.seller_id, attempt=args.attempt
    )
    _print(asdict(outcome))


async def list_tasks(args, database: Database):
    status = TaskStatus(args.status) if args.status else None
    tasks = await TaskStore(database).list_tasks(status=status, limit=args.limit)
    _print([asdict(task) for task in tasks])


COMMANDS = {
    "run": run_schedule,
    "dispatch": run_dispatch,
    "work": run_work,
    "tasks": list_tasks,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seller-finances",
        description="Seller finances ingestion pipeline",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: PG_DATABASE_URL env)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Run the dispatcher on a fixed interval with in-process workers"
    )
    run_parser.add_argument(
        "--interval",
        type=float,
        default=scheduler_configs["interval_seconds"],
        help="Seconds between dispatch cycles",
    )
    run_parser.add_argument(
        "--ticks", type=int, default=None, help="Stop after this many cycles"
    )
    run_parser.add_argument(
        "--concurrency",
        type=int,
        default=scheduler_configs["local_worker_concurrency"],
        help="In-process workers",
    )

    dispatch_parser = subparsers.add_parser("dispatch", help="Run one dispatch cycle")
    dispatch_parser.add_argument(
        "--local",
        action="store_true",
        help="Execute tasks in-process instead of invoking the worker Lambda",
    )
    dispatch_parser.add_argument(
        "--concurrency",
        type=int,
        default=scheduler_configs["local_worker_concurrency"],
        help="In-process workers (with --local)",
    )

    work_parser = subparsers.add_parser("work", help="Run one seller's PENDING task")
    work_parser.add_argument("seller_key")
    work_parser.add_argument("seller_id")
    work_parser.add_argument("--attempt", type=int, default=None)

    tasks_parser = subparsers.add_parser("tasks", help="List tasks")
    tasks_parser.add_argument(
        "--status", choices=[status.value for status in TaskStatus], default=None
    )
    tasks_parser.add_argument("--limit", type=int, default=50)

    return parser


async def _main(args) -> None:
    database = Database(args.database_url)
    try:
        await COMMANDS[args.command](args, database)
    finally:
        await database.close()


def main(argv: Optional[List[str]] = None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    asyncio.run(_main(args))


if __name__ == "__main__":
    main()
