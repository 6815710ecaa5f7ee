import asyncio
import logging
from typing import Coroutine, Set

# Strong references so detached tasks are not garbage collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


def _on_task_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logging.warning(f"Background task {task.get_name()} failed: {error!r}")


def track(task: asyncio.Task) -> asyncio.Task:
    """Keep an already running task alive until it finishes on its own."""
    _background_tasks.add(task)
    task.add_done_callback(_on_task_done)
    return task


def spawn(coro: Coroutine, name: str) -> asyncio.Task:
    """Run a coroutine detached from the caller. Failures are only logged."""
    return track(asyncio.create_task(coro, name=name))


async def drain(timeout: float = 5.0) -> None:
    """Wait for in-flight background work, used on shutdown and in tests."""
    loop = asyncio.get_running_loop()
    while True:
        tasks = [t for t in _background_tasks if t.get_loop() is loop and not t.done()]
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logging.warning(f"{len(pending)} background task(s) still running after {timeout}s")
            return
