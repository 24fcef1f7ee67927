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

"""Multi-file project bridge for in-process analysis engines.

This package lets a host keep several independent multi-file projects in sync
with one or more analysis engines, and ask those engines for diagnostics,
completions and navigation results with line/column positions.

Package Structure:
    paths.py         - Path normalization and URI prefix handling
    filesystem.py    - VirtualFileTree, the in-memory file tree
    positions.py     - Offset <-> line/column conversion
    serializer.py    - RequestSerializer, the per-engine FIFO of operations
    protocol.py      - Host/worker boundary messages
    engine.py        - AnalysisEngine interface and the engine-side worker
    connection.py    - EngineConnection, the host side of one engine
    project.py       - Project and ProjectRegistry
    lazy_load.py     - LazyLoadBridge, on-demand file loading
    store.py         - Backing stores that supply file contents
    manager.py       - ProjectWorkspace facade
    diagnostics.py   - Debounced re-validation
    config.py        - Engine modes and bridge settings

Usage:
    from multifile_bridge import InMemoryBackingStore, ProjectWorkspace

    async with ProjectWorkspace(create_engine) as workspace:
        await workspace.start_engine("typescript")
        project = await workspace.open_project(
            InMemoryBackingStore({"a.ts": "export const a = 1;"}),
            current_file="a.ts",
        )
        diagnostics = await workspace.get_diagnostics(project.id, "a.ts")
"""

from multifile_bridge.config import (
    ENGINE_MODES,
    BridgeSettings,
    EngineModeConfig,
    export_settings,
    get_mode_for_file,
    load_settings,
)
from multifile_bridge.connection import EngineConnection
from multifile_bridge.diagnostics import DiagnosticsValidator, flatten_diagnostic_message
from multifile_bridge.engine import AnalysisEngine, EngineWorker, ProjectHost
from multifile_bridge.errors import (
    BackingStoreError,
    BridgeError,
    DisposedError,
    NotFoundError,
    ParentMissingError,
)
from multifile_bridge.filesystem import FileReadResult, VirtualFileTree
from multifile_bridge.lazy_load import LazyLoadBridge, LoadState
from multifile_bridge.manager import EngineStatus, ProjectWorkspace
from multifile_bridge.positions import offset_to_position, position_to_offset, span_to_range
from multifile_bridge.project import (
    Project,
    ProjectRegistry,
    get_project_registry,
    reset_project_registry,
)
from multifile_bridge.serializer import RequestSerializer, SerializerClosedError
from multifile_bridge.store import BackingStore, DirectoryBackingStore, InMemoryBackingStore
from multifile_bridge.protocol import FormatOptions
from multifile_bridge.types import (
    CompletionDetails,
    CompletionEntry,
    Diagnostic,
    DiagnosticCategory,
    DocumentHighlight,
    DocumentSymbol,
    EngineDiagnostic,
    HighlightKind,
    Location,
    MessageChain,
    NavigationItem,
    OccurrenceSpan,
    ParameterInfo,
    Position,
    Range,
    SignatureHelp,
    SignatureInfo,
    TextChange,
    TextEdit,
    TextSpan,
)

__version__ = "0.1.0"

__all__ = [
    # Workspace
    "ProjectWorkspace",
    "EngineStatus",
    "DiagnosticsValidator",
    "flatten_diagnostic_message",
    # Projects
    "Project",
    "ProjectRegistry",
    "get_project_registry",
    "reset_project_registry",
    "VirtualFileTree",
    "FileReadResult",
    # Engines
    "AnalysisEngine",
    "EngineWorker",
    "ProjectHost",
    "EngineConnection",
    "RequestSerializer",
    "SerializerClosedError",
    "LazyLoadBridge",
    "LoadState",
    # Stores
    "BackingStore",
    "InMemoryBackingStore",
    "DirectoryBackingStore",
    # Positions
    "offset_to_position",
    "position_to_offset",
    "span_to_range",
    # Configuration
    "ENGINE_MODES",
    "EngineModeConfig",
    "BridgeSettings",
    "get_mode_for_file",
    "load_settings",
    "export_settings",
    # Errors
    "BridgeError",
    "NotFoundError",
    "ParentMissingError",
    "DisposedError",
    "BackingStoreError",
    # Types
    "CompletionDetails",
    "CompletionEntry",
    "Diagnostic",
    "DiagnosticCategory",
    "DocumentHighlight",
    "DocumentSymbol",
    "EngineDiagnostic",
    "FormatOptions",
    "HighlightKind",
    "Location",
    "MessageChain",
    "NavigationItem",
    "OccurrenceSpan",
    "ParameterInfo",
    "Position",
    "Range",
    "SignatureHelp",
    "SignatureInfo",
    "TextChange",
    "TextEdit",
    "TextSpan",
]
