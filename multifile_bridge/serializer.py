# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Per-engine request serialization.

Mutations and project switches for one engine are sent through a channel and
executed one at a time, in submission order, by a single consumer task.
Analysis queries do not go through the channel; they wait until it is idle
(nothing queued and nothing running) and then run directly.

Accepted race: a query only waits for operations submitted *before* it starts.
An operation submitted while the query is running is not waited for, so the
query may observe state that is about to change. Callers that need a settled
result must re-run the query after the newer operation completes (the
validation layer does this by re-validating on every change).
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[Any]]


class SerializerClosedError(RuntimeError):
    """Raised when submitting to a serializer that was closed."""


class RequestSerializer:
    """Ordered, single-consumer operation queue with an idle signal.

    Usage:
        serializer = RequestSerializer("typescript")
        await serializer.enqueue(lambda: worker.receive(payload))
        result = await serializer.run_when_idle(lambda: worker.analyze(request))
        await serializer.close()
    """

    def __init__(self, name: str = "engine", max_size: int = 0):
        """Initialize the serializer.

        Args:
            name: Name used in log messages
            max_size: Maximum number of queued operations, 0 for unbounded
        """
        self.name = name
        self._queue: "asyncio.Queue[Tuple[Operation, asyncio.Future]]" = asyncio.Queue(
            maxsize=max_size
        )
        self._idle = asyncio.Event()
        self._idle.set()
        self._outstanding = 0  # queued + running
        self._consumer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def is_idle(self) -> bool:
        """True when nothing is queued and no operation is running."""
        return self._outstanding == 0

    @property
    def pending_count(self) -> int:
        return self._outstanding

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.get_running_loop().create_task(
                self._consume(), name=f"request-serializer-{self.name}"
            )

    def _track(self) -> asyncio.Future:
        if self._closed:
            raise SerializerClosedError(f"Serializer {self.name} is closed")
        future = asyncio.get_running_loop().create_future()
        self._outstanding += 1
        self._idle.clear()
        self._ensure_consumer()
        return future

    def _release(self) -> None:
        self._outstanding -= 1
        if self._outstanding == 0:
            self._idle.set()

    def submit(self, operation: Operation) -> asyncio.Future:
        """Queue an operation without waiting for it.

        Safe to call from synchronous callbacks. The operation counts as
        pending from the moment this returns.

        Returns:
            Future resolved with the operation's result or exception

        Raises:
            asyncio.QueueFull: If the queue is bounded and full
            SerializerClosedError: If the serializer was closed
        """
        future = self._track()
        try:
            self._queue.put_nowait((operation, future))
        except asyncio.QueueFull:
            self._release()
            raise
        return future

    async def enqueue(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Queue an operation and wait for its result.

        Waits for queue space when the queue is bounded. Cancelling the caller
        does not cancel an operation that was already queued.
        """
        future = self._track()
        try:
            await self._queue.put((operation, future))
        except BaseException:
            self._release()
            raise
        return await asyncio.shield(future)

    async def wait_idle(self) -> None:
        """Wait until no operation is queued or running."""
        while self._outstanding:
            await self._idle.wait()

    async def run_when_idle(self, query: Callable[[], Awaitable[T]]) -> T:
        """Run a query once every previously submitted operation has finished.

        The query runs exactly once. Its exceptions propagate to the caller
        and do not affect the queue.
        """
        await self.wait_idle()
        return await query()

    async def _consume(self) -> None:
        while True:
            operation, future = await self._queue.get()
            try:
                if future.done():
                    continue
                try:
                    result = await operation()
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                except Exception as e:
                    logger.debug(f"[{self.name}] queued operation failed: {e}")
                    future.set_exception(e)
                else:
                    future.set_result(result)
            finally:
                self._queue.task_done()
                self._release()

    async def close(self) -> None:
        """Stop the consumer and cancel everything still queued."""
        self._closed = True
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
        self._consumer = None

        while not self._queue.empty():
            _operation, future = self._queue.get_nowait()
            future.cancel()
            self._queue.task_done()
            self._release()
        self._idle.set()
