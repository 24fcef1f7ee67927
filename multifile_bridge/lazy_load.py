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

"""On-demand loading of files an engine knows about but has no content for.

When an engine reads a file that was announced without content, its worker
posts a ``NeedsFile`` message. The bridge reads the file from the project's
backing store and writes it back into that engine. The whole load runs as one
operation in the engine's serializer, so analysis requests issued after the
signal wait until the content has been delivered.
"""

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional, Set, Tuple

from multifile_bridge.connection import EngineConnection
from multifile_bridge.errors import BridgeError
from multifile_bridge.protocol import NeedsFile, WriteFile
from multifile_bridge.serializer import SerializerClosedError

if TYPE_CHECKING:
    from multifile_bridge.project import Project, ProjectRegistry

logger = logging.getLogger(__name__)


class LoadState(str, Enum):
    """Progress of one (project, file) load."""

    REQUESTED = "requested"
    LOADING = "loading"
    DELIVERED = "delivered"
    FAILED = "failed"


class LazyLoadBridge:
    """Answers ``NeedsFile`` requests from engine workers.

    Repeated requests for the same file are not merged; each one re-reads the
    store and re-delivers the content, which is harmless.
    """

    def __init__(self, registry: "ProjectRegistry"):
        self._registry = registry
        self._states: Dict[Tuple[str, str], LoadState] = {}
        self._pending: Set["asyncio.Future[bool]"] = set()
        self._unsubscribe = registry.on_disposed(self.forget)

    def attach(self, connection: EngineConnection) -> None:
        """Route the connection's ``needs_file`` messages to this bridge."""
        connection.register_handler(
            "needs_file", lambda message: self.handle_needs_file(connection, message)
        )

    def get_state(self, project_id: str, path: str) -> Optional[LoadState]:
        return self._states.get((project_id, path))

    def forget(self, project: "Project") -> None:
        """Drop the load states of a disposed project."""
        for key in [k for k in self._states if k[0] == project.id]:
            del self._states[key]

    def close(self) -> None:
        self._unsubscribe()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def handle_needs_file(
        self, connection: EngineConnection, message: NeedsFile
    ) -> Optional["asyncio.Future[bool]"]:
        """Queue a load for the requested file.

        Returns:
            Future resolving to True once delivered, or None if nothing was queued
        """
        project = self._registry.get(message.project_id)
        if project is None or project.is_disposed:
            logger.debug(f"Ignoring file request for unknown project {message.project_id}")
            return None

        key = (project.id, message.path)
        self._states[key] = LoadState.REQUESTED
        try:
            future = connection.serializer.submit(
                lambda: self._load(connection, project, message.path)
            )
        except (asyncio.QueueFull, SerializerClosedError, RuntimeError) as e:
            logger.warning(f"Could not queue load of {message.path}: {e}")
            self._states.pop(key, None)
            return None

        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        return future

    async def _load(self, connection: EngineConnection, project: "Project", path: str) -> bool:
        key = (project.id, path)
        if project.is_disposed:
            self._states.pop(key, None)
            return False
        self._states[key] = LoadState.LOADING
        # the host copy wins once it has content (loaded for another engine or written)
        content = project.get_file_value(path)
        if content is None:
            try:
                loaded = await project.store.read_file(path)
            except Exception as e:
                logger.error(f"Failed to load {path} for project {project.id}: {e}")
                if project.is_disposed:
                    self._states.pop(key, None)
                else:
                    self._states[key] = LoadState.FAILED
                return False

            if project.is_disposed or not project.tree.exists(path):
                self._states.pop(key, None)
                return False

            content = project.get_file_value(path)
            if content is None:
                project.apply_loaded_content(path, loaded)
                content = loaded

        delivered = True
        try:
            await connection.send(WriteFile(project_id=project.id, path=path, content=content))
        except BridgeError as e:
            logger.warning(f"Engine {connection.mode.name} rejected {path}: {e}")
            delivered = False

        if project.is_disposed:
            self._states.pop(key, None)
            return False
        if not delivered:
            self._states[key] = LoadState.FAILED
            return False
        self._states[key] = LoadState.DELIVERED
        logger.debug(f"Delivered {path} to engine {connection.mode.name} for project {project.id}")
        project.request_validation()
        return True

    async def wait_for_pending(self) -> None:
        """Wait until every queued load has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
