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

"""Engine-side worker.

The worker is the isolated side of an engine connection. It keeps its own
virtual file tree per registered project, answers the analysis engine's
filesystem queries from those trees, and asks the host for files it knows
about but has never received content for.

Messages reach the worker as JSON text and are dispatched by kind through an
explicit handler table.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from multifile_bridge import paths
from multifile_bridge.config import BridgeSettings
from multifile_bridge.errors import NotFoundError
from multifile_bridge.filesystem import VirtualFileTree
from multifile_bridge.protocol import (
    Analyze,
    AnalysisMethod,
    DisposeProject,
    FormatOptions,
    MarkExtraCompileFile,
    MkDir,
    NeedsFile,
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
from multifile_bridge.types import (
    CompletionDetails,
    CompletionEntry,
    EngineDiagnostic,
    NavigationItem,
    OccurrenceSpan,
    SignatureHelp,
    TextChange,
    TextSpan,
)

logger = logging.getLogger(__name__)


class ProjectHost:
    """Filesystem-shaped view of one project, handed to the analysis engine."""

    def __init__(
        self,
        project_id: str,
        state: "WorkerProject",
        post_message: Callable[[str], None],
        settings: BridgeSettings,
    ):
        self.project_id = project_id
        self._state = state
        self._post_message = post_message
        self._settings = settings

    @property
    def tree(self) -> VirtualFileTree:
        return self._state.tree

    @property
    def current_file(self) -> Optional[str]:
        return self._state.current_file

    def _key(self, path: str) -> str:
        return paths.normalize_path(path, self._settings.uri_prefix)

    def _is_extra_lib(self, path: str) -> bool:
        return bool(self._state.extra_lib) and self._key(path) == self._settings.extra_lib_name

    def get_current_directory(self) -> str:
        return ""

    def get_script_file_names(self) -> List[str]:
        """Files the engine compiles: the current file, extra compile files and the extra lib."""
        names: List[str] = []
        if self._state.current_file:
            names.append(self._state.current_file)
        for path in self._state.extra_compile_files.values():
            if path not in names:
                names.append(path)
        if self._state.extra_lib:
            names.append(self._settings.extra_lib_name)
        return names

    def get_script_version(self, path: str) -> str:
        if self._is_extra_lib(path):
            return "1"
        return str(self.tree.get_version(path))

    def get_script_snapshot(self, path: str) -> str:
        """Content of a file.

        A file that exists but was never loaded yields ``""`` and a
        ``NeedsFile`` request to the host.

        Raises:
            NotFoundError: If the file is not part of the project
        """
        if self._is_extra_lib(path):
            return self._state.extra_lib
        result = self.tree.read_file(path)
        if not result.found:
            raise NotFoundError(f"In worker file system: the file {path} wasn't found.", path=path)
        if not result.loaded:
            key = self._key(path)
            logger.debug(f"Requesting {key} for project {self.project_id}")
            self._post_message(encode_message(NeedsFile(project_id=self.project_id, path=key)))
            return ""
        return result.content

    def file_exists(self, path: str) -> bool:
        return self._is_extra_lib(path) or self.tree.exists(path)

    def directory_exists(self, path: str) -> bool:
        return self.tree.directory_exists(path)

    def get_directories(self, path: str) -> List[str]:
        return self.tree.list_subdirectories(path)

    def read_directory(
        self,
        path: str,
        extensions: Optional[List[str]] = None,
        exclude: Optional[List[str]] = None,
    ) -> List[str]:
        return self.tree.list_files(path, extensions, exclude)


class AnalysisEngine(ABC):
    """The analysis capability behind a worker.

    Engines are synchronous and offset based. They read files only through
    the ``ProjectHost`` they are given.
    """

    @abstractmethod
    def get_syntactic_diagnostics(self, host: ProjectHost, path: str) -> List[EngineDiagnostic]:
        pass

    @abstractmethod
    def get_semantic_diagnostics(self, host: ProjectHost, path: str) -> List[EngineDiagnostic]:
        pass

    @abstractmethod
    def get_completions(self, host: ProjectHost, path: str, offset: int) -> List[CompletionEntry]:
        pass

    def get_quick_info(self, host: ProjectHost, path: str, offset: int) -> Optional[str]:
        return None

    def get_definition(self, host: ProjectHost, path: str, offset: int) -> List[TextSpan]:
        return []

    def get_references(self, host: ProjectHost, path: str, offset: int) -> List[TextSpan]:
        return []

    def get_completion_details(
        self, host: ProjectHost, path: str, offset: int, entry_name: str
    ) -> Optional[CompletionDetails]:
        return None

    def get_signature_help(
        self, host: ProjectHost, path: str, offset: int
    ) -> Optional[SignatureHelp]:
        return None

    def get_occurrences(self, host: ProjectHost, path: str, offset: int) -> List[OccurrenceSpan]:
        return []

    def get_navigation_items(self, host: ProjectHost, path: str) -> List[NavigationItem]:
        return []

    def get_format_edits_for_range(
        self, host: ProjectHost, path: str, start: int, end: int, options: FormatOptions
    ) -> List[TextChange]:
        return []

    def get_format_edits_after_keystroke(
        self, host: ProjectHost, path: str, offset: int, key: str, options: FormatOptions
    ) -> List[TextChange]:
        return []


@dataclass
class WorkerProject:
    """State the worker keeps for one registered project."""

    tree: VirtualFileTree
    extra_lib: str = ""
    current_file: Optional[str] = None
    extra_compile_files: Dict[str, str] = field(default_factory=dict)


# Result for analysis against a project the worker does not know
_EMPTY_RESULTS: Dict[AnalysisMethod, Callable[[], Any]] = {
    AnalysisMethod.SYNTACTIC_DIAGNOSTICS: list,
    AnalysisMethod.SEMANTIC_DIAGNOSTICS: list,
    AnalysisMethod.COMPLETIONS: list,
    AnalysisMethod.QUICK_INFO: lambda: None,
    AnalysisMethod.DEFINITION: list,
    AnalysisMethod.REFERENCES: list,
    AnalysisMethod.COMPLETION_DETAILS: lambda: None,
    AnalysisMethod.SIGNATURE_HELP: lambda: None,
    AnalysisMethod.OCCURRENCES: list,
    AnalysisMethod.NAVIGATION_ITEMS: list,
    AnalysisMethod.FORMAT_RANGE: list,
    AnalysisMethod.FORMAT_ON_TYPE: list,
}

# Extra Analyze fields each method needs besides project and path
_REQUIRED_FIELDS: Dict[AnalysisMethod, Tuple[str, ...]] = {
    AnalysisMethod.COMPLETIONS: ("offset",),
    AnalysisMethod.QUICK_INFO: ("offset",),
    AnalysisMethod.DEFINITION: ("offset",),
    AnalysisMethod.REFERENCES: ("offset",),
    AnalysisMethod.COMPLETION_DETAILS: ("offset", "entry_name"),
    AnalysisMethod.SIGNATURE_HELP: ("offset",),
    AnalysisMethod.OCCURRENCES: ("offset",),
    AnalysisMethod.FORMAT_RANGE: ("offset", "end_offset"),
    AnalysisMethod.FORMAT_ON_TYPE: ("offset", "key"),
}


class EngineWorker:
    """Isolated side of an engine connection.

    Args:
        engine: The analysis engine answering ``Analyze`` messages
        post_message: Callback carrying JSON messages back to the host
        settings: Bridge settings
    """

    def __init__(
        self,
        engine: AnalysisEngine,
        post_message: Callable[[str], None],
        settings: Optional[BridgeSettings] = None,
    ):
        self.engine = engine
        self._post_message = post_message
        self._settings = settings or BridgeSettings()
        self._projects: Dict[str, WorkerProject] = {}
        self._active_project_id: Optional[str] = None
        self._handlers: Dict[str, Callable[[Any], Any]] = {
            "register_project": self._register_project,
            "dispose_project": self._dispose_project,
            "set_active_project": self._set_active_project,
            "write_file": self._write_file,
            "remove_file": self._remove_file,
            "mk_dir": self._mk_dir,
            "rm_dir": self._rm_dir,
            "set_current_file": self._set_current_file,
            "mark_extra_compile_file": self._mark_extra_compile_file,
            "unmark_extra_compile_file": self._unmark_extra_compile_file,
            "analyze": self._analyze,
        }

    @property
    def active_project_id(self) -> Optional[str]:
        return self._active_project_id

    @property
    def project_ids(self) -> List[str]:
        return list(self._projects)

    def get_project(self, project_id: str) -> WorkerProject:
        project = self._projects.get(project_id)
        if project is None:
            raise NotFoundError(
                f"Project {project_id} is not registered",
                context={"project_id": project_id},
            )
        return project

    def host_for(self, project_id: str) -> ProjectHost:
        project = self.get_project(project_id)
        return ProjectHost(project_id, project, self._post_message, self._settings)

    async def receive(self, payload: str) -> Any:
        """Handle one message from the host.

        Returns:
            The handler's result (analysis results for ``Analyze``, else None)
        """
        message = parse_message(payload)
        handler = self._handlers.get(message.kind)
        if handler is None:
            raise ValueError(f"Worker cannot handle message kind: {message.kind}")
        return handler(message)

    # Project lifecycle

    def _register_project(self, message: RegisterProject) -> None:
        if message.project_id in self._projects:
            logger.debug(f"Re-registering project {message.project_id}")
        tree = VirtualFileTree.from_entries(
            ((entry.path, entry.content) for entry in message.files),
            uri_prefix=self._settings.uri_prefix,
        )
        self._projects[message.project_id] = WorkerProject(
            tree=tree,
            extra_lib=message.extra_lib,
            current_file=message.current_file,
            extra_compile_files=dict(message.extra_compile_files),
        )

    def _dispose_project(self, message: DisposeProject) -> None:
        self._projects.pop(message.project_id, None)
        if self._active_project_id == message.project_id:
            self._active_project_id = None

    def _set_active_project(self, message: SetActiveProject) -> None:
        if message.project_id == self._active_project_id:
            return
        if message.project_id is not None:
            self.get_project(message.project_id)
        self._active_project_id = message.project_id

    # File mutations

    def _write_file(self, message: WriteFile) -> None:
        self.get_project(message.project_id).tree.write_file(message.path, message.content)

    def _remove_file(self, message: RemoveFile) -> None:
        self.get_project(message.project_id).tree.remove_file(message.path)

    def _mk_dir(self, message: MkDir) -> None:
        self.get_project(message.project_id).tree.mk_dir(message.path, message.recursive)

    def _rm_dir(self, message: RmDir) -> None:
        self.get_project(message.project_id).tree.rm_dir(message.path)

    def _set_current_file(self, message: SetCurrentFile) -> None:
        self.get_project(message.project_id).current_file = message.path

    def _mark_extra_compile_file(self, message: MarkExtraCompileFile) -> None:
        self.get_project(message.project_id).extra_compile_files[message.key] = message.path

    def _unmark_extra_compile_file(self, message: UnmarkExtraCompileFile) -> None:
        self.get_project(message.project_id).extra_compile_files.pop(message.key, None)

    # Analysis

    def _analyze(self, message: Analyze) -> Any:
        project_id = message.project_id or self._active_project_id
        if project_id is None or project_id not in self._projects:
            logger.warning(f"Analysis requested for unknown project {project_id!r}")
            return _EMPTY_RESULTS[message.method]()

        for name in _REQUIRED_FIELDS.get(message.method, ()):
            if getattr(message, name) is None:
                raise ValueError(f"{message.method.value} requires {name}")

        host = self.host_for(project_id)
        engine = self.engine
        path = message.path
        method = message.method
        if method == AnalysisMethod.SYNTACTIC_DIAGNOSTICS:
            return engine.get_syntactic_diagnostics(host, path)
        if method == AnalysisMethod.SEMANTIC_DIAGNOSTICS:
            return engine.get_semantic_diagnostics(host, path)
        if method == AnalysisMethod.COMPLETIONS:
            return engine.get_completions(host, path, message.offset)
        if method == AnalysisMethod.QUICK_INFO:
            return engine.get_quick_info(host, path, message.offset)
        if method == AnalysisMethod.DEFINITION:
            return engine.get_definition(host, path, message.offset)
        if method == AnalysisMethod.REFERENCES:
            return engine.get_references(host, path, message.offset)
        if method == AnalysisMethod.COMPLETION_DETAILS:
            return engine.get_completion_details(host, path, message.offset, message.entry_name)
        if method == AnalysisMethod.SIGNATURE_HELP:
            return engine.get_signature_help(host, path, message.offset)
        if method == AnalysisMethod.OCCURRENCES:
            return engine.get_occurrences(host, path, message.offset)
        if method == AnalysisMethod.NAVIGATION_ITEMS:
            return engine.get_navigation_items(host, path)

        options = message.options or FormatOptions()
        if method == AnalysisMethod.FORMAT_RANGE:
            return engine.get_format_edits_for_range(
                host, path, message.offset, message.end_offset, options
            )
        return engine.get_format_edits_after_keystroke(
            host, path, message.offset, message.key, options
        )
