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

"""Boundary protocol between the host and an engine worker.

Every message is a pydantic model tagged by ``kind``; the union of all of them
is closed, so an unknown kind fails validation instead of being dispatched by
ad hoc field checks.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class FileEntry(BaseModel):
    """A file in a project snapshot; ``content=None`` means "exists, not loaded"."""

    path: str = Field(description="Root-relative file path")
    content: Optional[str] = Field(default=None, description="File content if loaded")


class RegisterProject(BaseModel):
    kind: Literal["register_project"] = "register_project"
    project_id: str
    current_file: Optional[str] = None
    files: List[FileEntry] = Field(default_factory=list)
    extra_lib: str = ""
    extra_compile_files: Dict[str, str] = Field(
        default_factory=dict, description="Out-of-band files compiled with the project"
    )


class DisposeProject(BaseModel):
    kind: Literal["dispose_project"] = "dispose_project"
    project_id: str


class SetActiveProject(BaseModel):
    kind: Literal["set_active_project"] = "set_active_project"
    project_id: Optional[str] = None


class WriteFile(BaseModel):
    kind: Literal["write_file"] = "write_file"
    project_id: str
    path: str
    content: Optional[str] = None


class RemoveFile(BaseModel):
    kind: Literal["remove_file"] = "remove_file"
    project_id: str
    path: str


class MkDir(BaseModel):
    kind: Literal["mk_dir"] = "mk_dir"
    project_id: str
    path: str
    recursive: bool = False


class RmDir(BaseModel):
    kind: Literal["rm_dir"] = "rm_dir"
    project_id: str
    path: str


class SetCurrentFile(BaseModel):
    kind: Literal["set_current_file"] = "set_current_file"
    project_id: str
    path: Optional[str] = None


class MarkExtraCompileFile(BaseModel):
    kind: Literal["mark_extra_compile_file"] = "mark_extra_compile_file"
    project_id: str
    key: str
    path: str


class UnmarkExtraCompileFile(BaseModel):
    kind: Literal["unmark_extra_compile_file"] = "unmark_extra_compile_file"
    project_id: str
    key: str


class AnalysisMethod(str, Enum):
    SYNTACTIC_DIAGNOSTICS = "syntactic_diagnostics"
    SEMANTIC_DIAGNOSTICS = "semantic_diagnostics"
    COMPLETIONS = "completions"
    QUICK_INFO = "quick_info"
    DEFINITION = "definition"
    REFERENCES = "references"
    COMPLETION_DETAILS = "completion_details"
    SIGNATURE_HELP = "signature_help"
    OCCURRENCES = "occurrences"
    NAVIGATION_ITEMS = "navigation_items"
    FORMAT_RANGE = "format_range"
    FORMAT_ON_TYPE = "format_on_type"


class FormatOptions(BaseModel):
    """Formatting preferences passed to the engine."""

    tab_size: int = 4
    insert_spaces: bool = True
    new_line: str = "\n"


class Analyze(BaseModel):
    """Analysis request; ``project_id=None`` targets the worker's active project."""

    kind: Literal["analyze"] = "analyze"
    project_id: Optional[str] = None
    method: AnalysisMethod
    path: str
    offset: Optional[int] = None
    end_offset: Optional[int] = Field(default=None, description="End of a formatting range")
    entry_name: Optional[str] = Field(default=None, description="Completion entry to detail")
    key: Optional[str] = Field(default=None, description="Character typed for on-type formatting")
    options: Optional[FormatOptions] = None


class NeedsFile(BaseModel):
    """Engine -> host: content for ``path`` is required but was never loaded."""

    kind: Literal["needs_file"] = "needs_file"
    project_id: str
    path: str


EngineMessage = Annotated[
    Union[
        RegisterProject,
        DisposeProject,
        SetActiveProject,
        WriteFile,
        RemoveFile,
        MkDir,
        RmDir,
        SetCurrentFile,
        MarkExtraCompileFile,
        UnmarkExtraCompileFile,
        Analyze,
        NeedsFile,
    ],
    Field(discriminator="kind"),
]

_message_adapter: TypeAdapter = TypeAdapter(EngineMessage)


def parse_message(payload: Union[str, bytes, Dict[str, Any]]) -> Any:
    """Validate a raw payload into its message model.

    Args:
        payload: JSON text or an already decoded dict

    Returns:
        The concrete message model for the payload's ``kind``

    Raises:
        pydantic.ValidationError: If the payload matches no message kind
    """
    if isinstance(payload, (str, bytes)):
        return _message_adapter.validate_json(payload)
    return _message_adapter.validate_python(payload)


def encode_message(message: BaseModel) -> str:
    return message.model_dump_json()
