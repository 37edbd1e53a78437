"""Bounded-concurrency batch rendering.

A fixed pool of workers pulls scene ids from a shared queue, so at most
`concurrency` renders are in flight. Every dispatch waits for a global
stagger delay first. The delay is taken under a lock, which spaces out
submissions even when several workers are free at once.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)

RenderFn = Callable[[str], Awaitable[bool]]


@dataclass
class BatchResult:
    succeeded: int = 0
    failed: int = 0
    failed_scene_ids: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


async def render_all(
    scene_ids: Iterable[str],
    render: RenderFn,
    *,
    concurrency: int = 2,
    stagger_seconds: float = 0.5,
) -> BatchResult:
    """Render `scene_ids` with at most `concurrency` in flight.

    `render` returns True for a scene that ended done. A False return or an
    exception counts as a failure and never stops the other scenes.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    queue: asyncio.Queue[str] = asyncio.Queue()
    for scene_id in scene_ids:
        queue.put_nowait(scene_id)

    result = BatchResult()
    total = queue.qsize()
    if total == 0:
        logger.info("No scenes to render")
        return result

    logger.info(f"Batch rendering {total} scene(s) with concurrency {concurrency}")
    stagger_lock = asyncio.Lock()

    async def worker(worker_id: int) -> None:
        while True:
            try:
                scene_id = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            async with stagger_lock:
                await asyncio.sleep(stagger_seconds)

            logger.debug(f"Worker {worker_id} picked scene {scene_id}")
            try:
                ok = await render(scene_id)
            except Exception as e:
                logger.error(f"Scene {scene_id} raised during batch render: {type(e).__name__}: {e}")
                ok = False

            if ok:
                result.succeeded += 1
            else:
                result.failed += 1
                result.failed_scene_ids.append(scene_id)

    workers = min(concurrency, total)
    await asyncio.gather(*(worker(i) for i in range(workers)))

    logger.info(
        f"Batch rendering complete. {result.succeeded} succeeded, {result.failed} failed."
    )
    return result
