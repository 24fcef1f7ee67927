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

"""Multi-file projects and the process-wide project registry.

A ``Project`` owns the host-side copy of a project's file tree and pushes every
change to each running engine connection. The ``ProjectRegistry`` only tracks
which projects are alive and tells listeners when projects appear, go away or
need re-validation; it is never used to pick the target of a call.
"""

import itertools
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from multifile_bridge import paths
from multifile_bridge.config import BridgeSettings
from multifile_bridge.connection import EngineConnection
from multifile_bridge.errors import DisposedError
from multifile_bridge.filesystem import VirtualFileTree
from multifile_bridge.positions import offset_to_position, position_to_offset, span_to_range
from multifile_bridge.protocol import FileEntry, RegisterProject
from multifile_bridge.store import BackingStore
from multifile_bridge.types import Position, Range, TextSpan

logger = logging.getLogger(__name__)

ProjectListener = Callable[["Project"], None]


class ConnectionSource(Protocol):
    """Anything that can list the engine connections currently running."""

    def live_connections(self) -> List[EngineConnection]: ...


class Project:
    """A host-defined set of files analysed as one compilation unit.

    Mutations are applied to the local tree first, then propagated to every
    live engine connection through that connection's serializer. Disposal is
    cooperative: every operation re-checks ``is_disposed`` after each
    suspension point and stops without further side effects.
    """

    _id_counter = itertools.count()

    def __init__(
        self,
        store: BackingStore,
        registry: "ProjectRegistry",
        connections: ConnectionSource,
        settings: Optional[BridgeSettings] = None,
        current_file: Optional[str] = None,
        extra_lib: str = "",
    ):
        """Initialize the project.

        Args:
            store: Backing store holding the project's files
            registry: Registry notified on disposal and validation requests
            connections: Source of the engine connections to propagate to
            settings: Bridge settings
            current_file: Initial analysis entry point
            extra_lib: Extra global declarations for the project
        """
        self.id = str(next(Project._id_counter))
        self.store = store
        self._registry = registry
        self._connections = connections
        self._settings = settings or BridgeSettings()
        self._tree = VirtualFileTree(uri_prefix=self._settings.uri_prefix)
        self._file_values: Dict[str, str] = {}
        self._current_file = self._key(current_file) if current_file else None
        self._extra_lib = extra_lib
        self._extra_compile_files: Dict[str, str] = {}
        self.is_disposed = False

    def __repr__(self) -> str:
        return f"Project(id={self.id!r}, current_file={self._current_file!r})"

    @property
    def current_file(self) -> Optional[str]:
        return self._current_file

    @property
    def extra_lib(self) -> str:
        return self._extra_lib

    @property
    def tree(self) -> VirtualFileTree:
        return self._tree

    @property
    def extra_compile_files(self) -> Dict[str, str]:
        return dict(self._extra_compile_files)

    def _key(self, path: str) -> str:
        return paths.normalize_path(path, self._settings.uri_prefix)

    def _assert_not_disposed(self) -> None:
        if self.is_disposed:
            raise DisposedError(self.id)

    async def load(self) -> None:
        """Fill the tree from the backing store's initial snapshot."""
        self._assert_not_disposed()
        entries = await self.store.read_all_directories()
        if self.is_disposed:
            return
        for entry in entries:
            self.apply_loaded_content(entry.path, entry.content)
        logger.debug(f"Project {self.id} loaded {len(entries)} files")

    def snapshot(self) -> RegisterProject:
        """Registration message describing the project as it is now."""
        return RegisterProject(
            project_id=self.id,
            current_file=self._current_file,
            files=[
                FileEntry(path=path, content=content)
                for path, content in self._tree.iter_files()
            ],
            extra_lib=self._extra_lib,
            extra_compile_files=dict(self._extra_compile_files),
        )

    async def _propagate(self, action: Callable[[EngineConnection], Awaitable[None]]) -> bool:
        """Run ``action`` against every live connection.

        Returns:
            False if the project was disposed while propagating
        """
        for connection in self._connections.live_connections():
            if not connection.is_running:
                continue
            await action(connection)
            if self.is_disposed:
                return False
        return True

    def request_validation(self) -> None:
        """Ask listeners to re-validate the current file, if there is one."""
        if self._current_file and not self.is_disposed:
            self._registry.notify_should_validate(self)

    # Mutations

    async def write_file(self, path: str, content: str) -> None:
        """Write a file, creating it and any missing directories."""
        self._assert_not_disposed()
        key = self._key(path)
        self._tree.write_file(key, content)
        self._file_values[key] = content

        if await self._propagate(lambda c: c.write_file(self.id, key, content)):
            self.request_validation()

    async def remove_file(self, path: str) -> None:
        """Remove a file.

        Raises:
            NotFoundError: If the file does not exist
        """
        self._assert_not_disposed()
        key = self._key(path)
        self._tree.remove_file(key)
        self._file_values.pop(key, None)

        if await self._propagate(lambda c: c.remove_file(self.id, key)):
            self.request_validation()

    async def set_current_file(self, path: Optional[str]) -> None:
        """Set the file engines treat as the analysis entry point."""
        self._assert_not_disposed()
        key = self._key(path) if path else None
        self._current_file = key

        if await self._propagate(lambda c: c.set_current_file(self.id, key)):
            self.request_validation()

    async def mk_dir(self, path: str, recursive: bool = False) -> None:
        """Create a directory.

        Raises:
            ParentMissingError: If ``recursive`` is False and a parent is missing
        """
        self._assert_not_disposed()
        key = self._key(path)
        self._tree.mk_dir(key, recursive)

        if await self._propagate(lambda c: c.mk_dir(self.id, key, recursive)):
            self.request_validation()

    async def rm_dir(self, path: str) -> None:
        """Remove a directory and everything beneath it."""
        self._assert_not_disposed()
        key = self._key(path)
        self._tree.rm_dir(key)
        if key:
            prefix = key + "/"
            for cached in [p for p in self._file_values if p.startswith(prefix)]:
                del self._file_values[cached]

        if await self._propagate(lambda c: c.rm_dir(self.id, key)):
            self.request_validation()

    async def mark_extra_compile_file(self, key: str, path: str) -> None:
        """Compile ``path`` with the project without making it the current file."""
        self._assert_not_disposed()
        target = self._key(path)
        self._extra_compile_files[key] = target

        if await self._propagate(lambda c: c.mark_extra_compile_file(self.id, key, target)):
            self.request_validation()

    async def unmark_extra_compile_file(self, key: str) -> None:
        self._assert_not_disposed()
        self._extra_compile_files.pop(key, None)

        if await self._propagate(lambda c: c.unmark_extra_compile_file(self.id, key)):
            self.request_validation()

    def apply_loaded_content(self, path: str, content: Optional[str]) -> None:
        """Record content obtained from the backing store without propagating it."""
        key = self._key(path)
        self._tree.write_file(key, content)
        if content is None:
            self._file_values.pop(key, None)
        else:
            self._file_values[key] = content

    # Content access

    def get_file_value(self, path: str) -> Optional[str]:
        """Most recently written content of a file, if known."""
        return self._file_values.get(self._key(path))

    def get_version(self, path: str) -> int:
        return self._tree.get_version(path)

    def offset_to_position(self, path: str, offset: int) -> Position:
        return offset_to_position(self.get_file_value(path), offset)

    def position_to_offset(self, path: str, position: Position) -> int:
        return position_to_offset(self.get_file_value(path), position)

    def span_to_range(self, span: TextSpan) -> Range:
        return span_to_range(self.get_file_value(span.path), span)

    def dispose(self) -> None:
        """Dispose the project. Later mutations fail with ``DisposedError``."""
        if self.is_disposed:
            return
        self.is_disposed = True
        self._registry.remove(self)
        logger.info(f"Project {self.id} disposed")


class ProjectRegistry:
    """Process-wide set of live projects, in creation order.

    Listeners are plain callables; a failing listener is logged and does not
    prevent the others from running.
    """

    def __init__(self):
        self._projects: List[Project] = []
        self._created_listeners: List[ProjectListener] = []
        self._disposed_listeners: List[ProjectListener] = []
        self._validate_listeners: List[ProjectListener] = []

    @property
    def projects(self) -> List[Project]:
        return list(self._projects)

    def __len__(self) -> int:
        return len(self._projects)

    def __contains__(self, project_id: object) -> bool:
        return self.get(project_id) is not None  # type: ignore[arg-type]

    def get(self, project_id: str) -> Optional[Project]:
        for project in self._projects:
            if project.id == project_id:
                return project
        return None

    def add(self, project: Project) -> None:
        if project in self._projects:
            return
        self._projects.append(project)
        logger.debug(f"Registered project {project.id}")
        self._fire(self._created_listeners, project)

    def remove(self, project: Project) -> bool:
        """Remove a project and notify disposal listeners.

        Returns:
            True if the project was registered
        """
        if project not in self._projects:
            return False
        self._projects.remove(project)
        self._fire(self._disposed_listeners, project)
        return True

    def notify_should_validate(self, project: Project) -> None:
        self._fire(self._validate_listeners, project)

    def on_created(self, listener: ProjectListener) -> Callable[[], None]:
        """Subscribe to project creation. Returns a function that unsubscribes."""
        return self._subscribe(self._created_listeners, listener)

    def on_disposed(self, listener: ProjectListener) -> Callable[[], None]:
        return self._subscribe(self._disposed_listeners, listener)

    def on_should_validate(self, listener: ProjectListener) -> Callable[[], None]:
        return self._subscribe(self._validate_listeners, listener)

    @staticmethod
    def _subscribe(
        listeners: List[ProjectListener], listener: ProjectListener
    ) -> Callable[[], None]:
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    @staticmethod
    def _fire(listeners: List[ProjectListener], project: Project) -> None:
        for listener in list(listeners):
            try:
                listener(project)
            except Exception as e:
                logger.error(f"Project listener error for project {project.id}: {e}")

    def clear(self) -> None:
        """Forget all projects and listeners."""
        self._projects.clear()
        self._created_listeners.clear()
        self._disposed_listeners.clear()
        self._validate_listeners.clear()


# Global registry singleton
_project_registry: Optional[ProjectRegistry] = None


def get_project_registry() -> ProjectRegistry:
    """Get the global project registry.

    Returns:
        The singleton registry instance
    """
    global _project_registry
    if _project_registry is None:
        _project_registry = ProjectRegistry()
    return _project_registry


def reset_project_registry() -> None:
    """Reset the global project registry.

    Useful for testing.
    """
    global _project_registry
    _project_registry = None
