"""Race a single generation call against a deadline.

Timeouts are a normal outcome here: the call is cancelled and whatever text
was streamed before the deadline is returned as ``Cancelled``. Provider
exceptions raised before the deadline propagate unchanged.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from debate_arena.providers.base import ChunkCallback

logger = logging.getLogger(__name__)

# How long to wait for a cancelled call to unwind before abandoning it
_CANCEL_GRACE_SEC = 0.25

Operation = Callable[[ChunkCallback], Awaitable[str]]


@dataclass(frozen=True)
class Completed:
    value: str
    elapsed_sec: float


@dataclass(frozen=True)
class Cancelled:
    partial: str
    elapsed_sec: float


GenerationOutcome = Completed | Cancelled


def deadline_after(seconds: float) -> float:
    """Absolute deadline on the running loop's clock."""
    return asyncio.get_running_loop().time() + seconds


def _consume_result(task: asyncio.Future) -> None:
    # Mark late exceptions as retrieved so an abandoned call does not log noise
    if not task.cancelled():
        task.exception()


async def run_with_deadline(
    operation: Operation,
    deadline: float,
    on_chunk: ChunkCallback | None = None,
) -> GenerationOutcome:
    """Run ``operation`` until it finishes or ``deadline`` passes.

    Args:
        operation: Coroutine factory; receives a chunk callback to report
            partial text as it is produced.
        deadline: Absolute time on the event loop clock (see deadline_after).
        on_chunk: Optional listener for chunks produced before the deadline.

    Returns:
        Completed with the full text, or Cancelled with the partial text.

    Raises:
        Whatever the operation raises before the deadline.
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    chunks: list[str] = []
    open_ = True

    def collect(chunk: str) -> None:
        if not open_:
            return
        chunks.append(chunk)
        if on_chunk is not None:
            on_chunk(chunk)

    task = asyncio.ensure_future(operation(collect))
    try:
        await asyncio.wait({task}, timeout=max(0.0, deadline - loop.time()))
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task.done():
        open_ = False
        return Completed(task.result(), loop.time() - start)

    open_ = False
    task.cancel()
    await asyncio.wait({task}, timeout=_CANCEL_GRACE_SEC)
    if task.done():
        _consume_result(task)
    else:
        logger.warning("Generation call ignored cancellation; abandoning it")
        task.add_done_callback(_consume_result)

    elapsed = loop.time() - start
    logger.debug("Deadline reached after %.2fs with %d chunks collected", elapsed, len(chunks))
    return Cancelled("".join(chunks), elapsed)
