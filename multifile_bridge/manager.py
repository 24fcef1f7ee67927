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

"""Workspace facade over projects and engine connections."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from multifile_bridge import paths
from multifile_bridge.config import (
    ENGINE_MODES,
    BridgeSettings,
    EngineModeConfig,
    get_mode_for_file,
)
from multifile_bridge.connection import EngineConnection
from multifile_bridge.diagnostics import flatten_diagnostic_message
from multifile_bridge.engine import AnalysisEngine
from multifile_bridge.errors import NotFoundError
from multifile_bridge.lazy_load import LazyLoadBridge
from multifile_bridge.project import Project, ProjectRegistry, get_project_registry
from multifile_bridge.protocol import (
    Analyze,
    AnalysisMethod,
    DisposeProject,
    FormatOptions,
    SetActiveProject,
)
from multifile_bridge.serializer import SerializerClosedError
from multifile_bridge.store import BackingStore, DirectoryBackingStore
from multifile_bridge.types import (
    CompletionDetails,
    CompletionEntry,
    Diagnostic,
    DocumentHighlight,
    DocumentSymbol,
    EngineDiagnostic,
    HighlightKind,
    Location,
    NavigationItem,
    Position,
    Range,
    SignatureHelp,
    TextChange,
    TextEdit,
    TextSpan,
)

logger = logging.getLogger(__name__)


@dataclass
class EngineStatus:
    """Status of an engine connection."""

    mode: str
    name: str
    running: bool
    idle: bool
    pending_operations: int
    registered_projects: int


class ProjectWorkspace:
    """Manages engine connections for a set of multi-file projects.

    Provides a unified interface for project mutations and analysis requests
    across engines. Every analysis call names the project it targets.

    Usage:
        async with ProjectWorkspace(create_engine) as workspace:
            await workspace.start_engine("typescript")
            project = await workspace.open_project(store, current_file="src/main.ts")
            diagnostics = await workspace.get_diagnostics(project.id, "src/main.ts")
        # All engines automatically stopped on exit
    """

    def __init__(
        self,
        engine_factory: Callable[[str], AnalysisEngine],
        settings: Optional[BridgeSettings] = None,
        registry: Optional[ProjectRegistry] = None,
        modes: Optional[Dict[str, EngineModeConfig]] = None,
    ):
        """Initialize the workspace.

        Args:
            engine_factory: Creates an analysis engine for a mode id
            settings: Bridge settings
            registry: Project registry (uses global if not provided)
            modes: Engine modes (defaults to ENGINE_MODES)
        """
        self._engine_factory = engine_factory
        self.settings = settings or BridgeSettings()
        self.registry = registry if registry is not None else get_project_registry()
        self._modes = modes or ENGINE_MODES
        self._connections: Dict[str, EngineConnection] = {}  # mode id -> connection
        self._active_project_id: Optional[str] = None
        # Messages waiting for queue space, per connection
        self._backlog: Dict[EngineConnection, Set[asyncio.Task]] = {}
        self.bridge = LazyLoadBridge(self.registry)
        self._unsubscribers = [
            self.registry.on_created(self._on_project_created),
            self.registry.on_disposed(self._on_project_disposed),
        ]

    async def __aenter__(self) -> "ProjectWorkspace":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - stops engines and detaches from the registry."""
        await self.close()

    @property
    def active_project_id(self) -> Optional[str]:
        return self._active_project_id

    def live_connections(self) -> List[EngineConnection]:
        return [c for c in self._connections.values() if c.is_running]

    def get_connection(self, mode: str) -> Optional[EngineConnection]:
        return self._connections.get(mode)

    # Engine lifecycle

    async def start_engine(self, mode: str) -> bool:
        """Start an engine and register every live project with it.

        Args:
            mode: Mode identifier (e.g. "typescript")

        Returns:
            True if started successfully
        """
        existing = self._connections.get(mode)
        if existing is not None and existing.is_running:
            return True

        config = self._modes.get(mode)
        if not config:
            logger.warning(f"No engine configuration for mode: {mode}")
            return False

        connection = EngineConnection(config, lambda: self._engine_factory(mode), self.settings)
        if not await connection.start():
            return False

        self.bridge.attach(connection)
        self._connections[mode] = connection
        try:
            for project in self.registry.projects:
                if not project.is_disposed:
                    self._deliver(connection, project.snapshot())
            if self._active_project_id is not None:
                self._deliver(connection, SetActiveProject(project_id=self._active_project_id))
            await self._flush(connection)
        except SerializerClosedError as e:
            logger.error(f"Failed to register projects with {config.name}: {e}")
            await self.stop_engine(mode)
            return False
        logger.info(f"Started engine for {mode}: {config.name}")
        return True

    async def stop_engine(self, mode: str) -> None:
        if mode in self._connections:
            for task in self._backlog.pop(self._connections[mode], set()):
                task.cancel()
            await self._connections[mode].stop()
            del self._connections[mode]
            logger.info(f"Stopped engine for {mode}")

    async def stop_all(self) -> None:
        """Stop all running engines."""
        for mode in list(self._connections.keys()):
            await self.stop_engine(mode)

    async def restart_engine(self, mode: str) -> bool:
        await self.stop_engine(mode)
        return await self.start_engine(mode)

    async def close(self) -> None:
        await self.stop_all()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.bridge.close()

    def _deliver(self, connection: EngineConnection, message: Any) -> None:
        """Queue a message from synchronous code, waiting for space if the queue is full.

        Once a message is waiting for space, later messages for the same
        connection wait behind it so they reach the engine in order.
        """
        backlog = self._backlog.setdefault(connection, set())
        if not backlog:
            try:
                connection.submit(message)
                return
            except asyncio.QueueFull:
                logger.warning(
                    f"Engine queue for {connection.mode.name} is full, "
                    f"delivering {message.kind} when space frees up"
                )
        previous = list(backlog)

        async def deliver() -> None:
            if previous:
                await asyncio.wait(previous)
            await connection.push(message)

        task = asyncio.get_running_loop().create_task(deliver())
        backlog.add(task)
        task.add_done_callback(lambda t: self._delivered(connection, t))

    def _delivered(self, connection: EngineConnection, task: asyncio.Task) -> None:
        self._backlog.get(connection, set()).discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Delivery to engine {connection.mode.name} failed: {error}")

    async def _flush(self, connection: Optional[EngineConnection] = None) -> None:
        """Wait until every backlogged message has been queued and processed."""
        targets = [connection] if connection is not None else list(self._backlog)
        tasks = [task for target in targets for task in self._backlog.get(target, ())]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_project_created(self, project: Project) -> None:
        for connection in self.live_connections():
            self._deliver(connection, project.snapshot())

    def _on_project_disposed(self, project: Project) -> None:
        if self._active_project_id == project.id:
            self._active_project_id = None
        for connection in self.live_connections():
            self._deliver(connection, DisposeProject(project_id=project.id))

    # Projects

    async def open_project(
        self,
        store: BackingStore,
        current_file: Optional[str] = None,
        extra_lib: str = "",
    ) -> Project:
        """Create a project from a backing store and register it with every engine.

        Args:
            store: Backing store with the project's files
            current_file: Initial analysis entry point
            extra_lib: Extra global declarations

        Returns:
            The new project
        """
        project = Project(
            store,
            self.registry,
            self,
            self.settings,
            current_file=current_file,
            extra_lib=extra_lib,
        )
        await project.load()
        self.registry.add(project)
        await self._flush()
        logger.info(f"Opened project {project.id}")
        return project

    async def open_directory(
        self,
        root: Union[str, Path],
        current_file: Optional[str] = None,
        extra_lib: str = "",
        extensions: Optional[Iterable[str]] = None,
        eager: bool = False,
    ) -> Project:
        """Open a directory on disk as a project.

        Directories listed in the ``skip_dirs`` setting are left out, as are
        files whose extension no configured engine handles unless
        ``extensions`` is given.
        """
        if extensions is None:
            extensions = {ext for mode in self._modes.values() for ext in mode.file_extensions}
        store = DirectoryBackingStore(
            root, extensions=extensions, eager=eager, skip_dirs=self.settings.skip_dirs
        )
        return await self.open_project(store, current_file=current_file, extra_lib=extra_lib)

    def get_project(self, project_id: str) -> Project:
        """Look up a live project.

        Raises:
            NotFoundError: If no live project has this id
        """
        project = self.registry.get(project_id)
        if project is None:
            raise NotFoundError(
                f"Project {project_id} does not exist", context={"project_id": project_id}
            )
        return project

    def dispose_project(self, project_id: str) -> None:
        self.get_project(project_id).dispose()

    async def set_active_project(self, project_id: str) -> None:
        """Make a project the default target of every engine.

        No-op when the project is already active.
        """
        self.get_project(project_id)
        if self._active_project_id == project_id:
            return
        self._active_project_id = project_id
        for connection in self.live_connections():
            await connection.set_active_project(project_id)

    async def mark_extra_compile_file(self, project_id: str, key: str, path: str) -> None:
        await self.get_project(project_id).mark_extra_compile_file(key, path)

    async def unmark_extra_compile_file(self, project_id: str, key: str) -> None:
        await self.get_project(project_id).unmark_extra_compile_file(key)

    # Analysis

    def _connection_for(self, path: str) -> Optional[EngineConnection]:
        config = get_mode_for_file(path, self._modes)
        if not config:
            return None
        for connection in self._connections.values():
            if connection.mode.mode_id == config.mode_id and connection.is_running:
                return connection
        return None

    def _resolve(self, project_id: Optional[str]) -> Project:
        target = project_id or self._active_project_id
        if target is None:
            raise NotFoundError("No project given and no active project")
        return self.get_project(target)

    async def get_diagnostics(self, project_id: Optional[str], path: str) -> List[Diagnostic]:
        """Get diagnostics for a file of a project.

        Args:
            project_id: Target project (active project if None)
            path: File path or URI

        Returns:
            Syntactic and semantic diagnostics, converted to line/column
        """
        project = self._resolve(project_id)
        key = paths.normalize_path(path, self.settings.uri_prefix)
        connection = self._connection_for(key)
        if not connection:
            return []

        methods = []
        if not self.settings.no_syntax_validation:
            methods.append(AnalysisMethod.SYNTACTIC_DIAGNOSTICS)
        if not self.settings.no_semantic_validation:
            methods.append(AnalysisMethod.SEMANTIC_DIAGNOSTICS)

        async def query() -> List[EngineDiagnostic]:
            results: List[EngineDiagnostic] = []
            for method in methods:
                request = Analyze(project_id=project.id, method=method, path=key)
                results.extend(await connection.send(request))
            return results

        raw = await connection.run_when_idle(query)
        return [self._convert_diagnostic(project, key, d) for d in raw]

    @staticmethod
    def _convert_diagnostic(
        project: Project, path: str, diagnostic: EngineDiagnostic
    ) -> Diagnostic:
        span = TextSpan(path=path, start=diagnostic.start, length=diagnostic.length)
        return Diagnostic(
            path=path,
            range=project.span_to_range(span),
            message=flatten_diagnostic_message(diagnostic.message),
            category=diagnostic.category,
            code=diagnostic.code,
            source=diagnostic.source,
        )

    async def _analyze_at(
        self,
        project_id: Optional[str],
        path: str,
        position: Position,
        method: AnalysisMethod,
        empty: Any,
        **fields: Any,
    ) -> Any:
        project = self._resolve(project_id)
        key = paths.normalize_path(path, self.settings.uri_prefix)
        connection = self._connection_for(key)
        if not connection:
            return empty
        offset = project.position_to_offset(key, position)
        return await connection.analyze(project.id, method, key, offset, **fields)

    async def get_completions(
        self, project_id: Optional[str], path: str, position: Position
    ) -> List[CompletionEntry]:
        """Get completions at a 1-based position."""
        return await self._analyze_at(
            project_id, path, position, AnalysisMethod.COMPLETIONS, []
        )

    async def get_quick_info(
        self, project_id: Optional[str], path: str, position: Position
    ) -> Optional[str]:
        return await self._analyze_at(project_id, path, position, AnalysisMethod.QUICK_INFO, None)

    async def get_definition(
        self, project_id: Optional[str], path: str, position: Position
    ) -> List[Location]:
        """Get definition locations, converted to line/column."""
        spans = await self._analyze_at(
            project_id, path, position, AnalysisMethod.DEFINITION, []
        )
        return self._to_locations(self._resolve(project_id), spans)

    async def get_references(
        self, project_id: Optional[str], path: str, position: Position
    ) -> List[Location]:
        spans = await self._analyze_at(
            project_id, path, position, AnalysisMethod.REFERENCES, []
        )
        return self._to_locations(self._resolve(project_id), spans)

    async def get_completion_details(
        self, project_id: Optional[str], path: str, position: Position, entry_name: str
    ) -> Optional[CompletionDetails]:
        """Resolve documentation and detail for one completion entry."""
        return await self._analyze_at(
            project_id,
            path,
            position,
            AnalysisMethod.COMPLETION_DETAILS,
            None,
            entry_name=entry_name,
        )

    async def get_signature_help(
        self, project_id: Optional[str], path: str, position: Position
    ) -> Optional[SignatureHelp]:
        return await self._analyze_at(
            project_id, path, position, AnalysisMethod.SIGNATURE_HELP, None
        )

    async def get_occurrences(
        self, project_id: Optional[str], path: str, position: Position
    ) -> List[DocumentHighlight]:
        """Highlight every occurrence of the symbol under the cursor."""
        project = self._resolve(project_id)
        occurrences = await self._analyze_at(
            project_id, path, position, AnalysisMethod.OCCURRENCES, []
        )
        return [
            DocumentHighlight(
                range=project.span_to_range(self._normalize_span(occurrence.span)),
                kind=HighlightKind.WRITE if occurrence.is_write_access else HighlightKind.TEXT,
            )
            for occurrence in occurrences
        ]

    async def get_document_symbols(
        self, project_id: Optional[str], path: str
    ) -> List[DocumentSymbol]:
        """Get the file outline as a flat list.

        Children come before their parent and carry the parent's name as
        ``container_name``.
        """
        project = self._resolve(project_id)
        key = paths.normalize_path(path, self.settings.uri_prefix)
        connection = self._connection_for(key)
        if not connection:
            return []
        items = await connection.analyze(project.id, AnalysisMethod.NAVIGATION_ITEMS, key)

        symbols: List[DocumentSymbol] = []

        def convert(item: NavigationItem, container: Optional[str]) -> None:
            for child in item.child_items:
                convert(child, item.text)
            if not item.spans:
                return
            span = item.spans[0]
            located = TextSpan(path=key, start=span.start, length=span.length)
            symbols.append(
                DocumentSymbol(
                    name=item.text,
                    kind=item.kind,
                    range=project.span_to_range(located),
                    container_name=container,
                )
            )

        for item in items:
            convert(item, None)
        return symbols

    async def format_range(
        self,
        project_id: Optional[str],
        path: str,
        selection: Range,
        options: Optional[FormatOptions] = None,
    ) -> List[TextEdit]:
        """Get the edits that format a range of a file."""
        project = self._resolve(project_id)
        key = paths.normalize_path(path, self.settings.uri_prefix)
        connection = self._connection_for(key)
        if not connection:
            return []
        start = project.position_to_offset(key, selection.start)
        end = project.position_to_offset(key, selection.end)
        changes = await connection.analyze(
            project.id,
            AnalysisMethod.FORMAT_RANGE,
            key,
            start,
            end_offset=end,
            options=options,
        )
        return self._to_edits(project, key, changes)

    async def format_on_type(
        self,
        project_id: Optional[str],
        path: str,
        position: Position,
        key: str,
        options: Optional[FormatOptions] = None,
    ) -> List[TextEdit]:
        """Get the edits to apply after ``key`` was typed at ``position``."""
        project = self._resolve(project_id)
        changes = await self._analyze_at(
            project_id,
            path,
            position,
            AnalysisMethod.FORMAT_ON_TYPE,
            [],
            key=key,
            options=options,
        )
        path = paths.normalize_path(path, self.settings.uri_prefix)
        return self._to_edits(project, path, changes)

    @staticmethod
    def _to_edits(project: Project, path: str, changes: List[TextChange]) -> List[TextEdit]:
        edits = []
        for change in changes:
            span = TextSpan(path=path, start=change.span.start, length=change.span.length)
            edits.append(TextEdit(range=project.span_to_range(span), new_text=change.new_text))
        return edits

    def _normalize_span(self, span: TextSpan) -> TextSpan:
        key = paths.normalize_path(span.path, self.settings.uri_prefix)
        return TextSpan(path=key, start=span.start, length=span.length)

    def _to_locations(self, project: Project, spans: List[TextSpan]) -> List[Location]:
        locations = []
        for span in spans:
            located = self._normalize_span(span)
            locations.append(Location(path=located.path, range=project.span_to_range(located)))
        return locations

    def get_status(self) -> Dict[str, EngineStatus]:
        """Get status of all engines.

        Returns:
            Dict of mode -> status
        """
        status = {}
        for mode, connection in self._connections.items():
            running = connection.is_running
            status[mode] = EngineStatus(
                mode=mode,
                name=connection.mode.name,
                running=running,
                idle=connection.serializer.is_idle if running else True,
                pending_operations=connection.serializer.pending_count if running else 0,
                registered_projects=len(connection.worker.project_ids) if running else 0,
            )
        return status
