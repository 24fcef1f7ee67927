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

"""Host-side connection to one analysis engine worker."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from multifile_bridge.config import BridgeSettings, EngineModeConfig
from multifile_bridge.engine import AnalysisEngine, EngineWorker
from multifile_bridge.protocol import (
    Analyze,
    AnalysisMethod,
    DisposeProject,
    MarkExtraCompileFile,
    MkDir,
    RegisterProject,
    RemoveFile,
    RmDir,
    SetActiveProject,
    SetCurrentFile,
    UnmarkExtraCompileFile,
    WriteFile,
    encode_message,
    parse_message,
)
from multifile_bridge.serializer import RequestSerializer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EngineConnection:
    """Channel to one engine instance.

    Every mutation goes through the connection's ``RequestSerializer``;
    analysis requests wait for it to be idle. Messages coming back from the
    worker are dispatched to handlers registered per message kind.
    """

    def __init__(
        self,
        mode: EngineModeConfig,
        engine_factory: Callable[[], AnalysisEngine],
        settings: Optional[BridgeSettings] = None,
    ):
        """Initialize the connection.

        Args:
            mode: Engine mode this connection serves
            engine_factory: Creates the analysis engine when the worker starts
            settings: Bridge settings
        """
        self.mode = mode
        self._engine_factory = engine_factory
        self._settings = settings or BridgeSettings()
        self._worker: Optional[EngineWorker] = None
        self._serializer: Optional[RequestSerializer] = None
        self._handlers: Dict[str, List[Callable[[Any], None]]] = {}

    @property
    def is_running(self) -> bool:
        """Check if the worker is running."""
        return self._worker is not None

    @property
    def worker(self) -> EngineWorker:
        if self._worker is None:
            raise RuntimeError(f"Engine {self.mode.name} not running")
        return self._worker

    @property
    def serializer(self) -> RequestSerializer:
        if self._serializer is None:
            raise RuntimeError(f"Engine {self.mode.name} not running")
        return self._serializer

    async def start(self) -> bool:
        """Start the worker.

        Returns:
            True if started successfully
        """
        if self.is_running:
            logger.warning(f"Engine {self.mode.name} already running")
            return True

        try:
            engine = self._engine_factory()
        except Exception as e:
            logger.exception(f"Failed to create engine {self.mode.name}: {e}")
            return False

        self._worker = EngineWorker(engine, self._on_worker_message, self._settings)
        self._serializer = RequestSerializer(self.mode.mode_id, self._settings.queue_size)
        logger.info(f"Engine {self.mode.name} started")
        return True

    async def stop(self) -> None:
        """Stop the worker, cancelling queued operations."""
        if not self.is_running:
            return

        try:
            await self.serializer.close()
        finally:
            self._worker = None
            self._serializer = None
            logger.info(f"Engine {self.mode.name} stopped")

    def register_handler(self, kind: str, handler: Callable[[Any], None]) -> None:
        """Register a handler for messages sent by the worker.

        Args:
            kind: Message kind (e.g. ``"needs_file"``)
            handler: Called with the parsed message
        """
        if kind not in self._handlers:
            self._handlers[kind] = []
        self._handlers[kind].append(handler)

    def _on_worker_message(self, payload: str) -> None:
        try:
            message = parse_message(payload)
        except ValidationError as e:
            logger.error(f"Invalid message from engine {self.mode.name}: {e}")
            return

        handlers = self._handlers.get(message.kind)
        if not handlers:
            logger.debug(f"No handler for {message.kind} from engine {self.mode.name}")
            return
        for handler in handlers:
            try:
                handler(message)
            except Exception as e:
                logger.error(f"Handler error for {message.kind}: {e}")

    async def send(self, message: BaseModel) -> Any:
        """Deliver a message to the worker immediately, bypassing the queue.

        Only call this from an operation that is already running in the
        serializer, or for read-only requests.
        """
        worker = self.worker
        payload = encode_message(message)
        # crossing the boundary always yields to the event loop
        await asyncio.sleep(0)
        return await worker.receive(payload)

    async def push(self, message: BaseModel) -> Any:
        """Queue a message behind every earlier mutation and wait for it."""
        return await self.serializer.enqueue(lambda: self.send(message))

    def submit(self, message: BaseModel) -> "asyncio.Future[Any]":
        """Queue a message from synchronous code without waiting for it."""
        future = self.serializer.submit(lambda: self.send(message))
        future.add_done_callback(self._log_failure)
        return future

    def _log_failure(self, future: "asyncio.Future[Any]") -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Queued message to engine {self.mode.name} failed: {error}")

    async def run_when_idle(self, query: Callable[[], Awaitable[T]]) -> T:
        return await self.serializer.run_when_idle(query)

    async def analyze(
        self,
        project_id: Optional[str],
        method: AnalysisMethod,
        path: str,
        offset: Optional[int] = None,
        **fields: Any,
    ) -> Any:
        """Run one analysis request once pending mutations have been applied.

        Extra keyword fields (end_offset, entry_name, key, options) are passed
        through to the Analyze message for the methods that need them.
        """
        request = Analyze(
            project_id=project_id, method=method, path=path, offset=offset, **fields
        )
        return await self.run_when_idle(lambda: self.send(request))

    # Typed mutation helpers

    async def register_project(self, message: RegisterProject) -> None:
        await self.push(message)

    async def dispose_project(self, project_id: str) -> None:
        await self.push(DisposeProject(project_id=project_id))

    async def set_active_project(self, project_id: Optional[str]) -> None:
        await self.push(SetActiveProject(project_id=project_id))

    async def write_file(self, project_id: str, path: str, content: Optional[str]) -> None:
        await self.push(WriteFile(project_id=project_id, path=path, content=content))

    async def remove_file(self, project_id: str, path: str) -> None:
        await self.push(RemoveFile(project_id=project_id, path=path))

    async def mk_dir(self, project_id: str, path: str, recursive: bool = False) -> None:
        await self.push(MkDir(project_id=project_id, path=path, recursive=recursive))

    async def rm_dir(self, project_id: str, path: str) -> None:
        await self.push(RmDir(project_id=project_id, path=path))

    async def set_current_file(self, project_id: str, path: Optional[str]) -> None:
        await self.push(SetCurrentFile(project_id=project_id, path=path))

    async def mark_extra_compile_file(self, project_id: str, key: str, path: str) -> None:
        await self.push(MarkExtraCompileFile(project_id=project_id, key=key, path=path))

    async def unmark_extra_compile_file(self, project_id: str, key: str) -> None:
        await self.push(UnmarkExtraCompileFile(project_id=project_id, key=key))
