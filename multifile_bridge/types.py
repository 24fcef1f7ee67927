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

"""Value types exchanged between engines and the host.

Engines speak in character offsets (``TextSpan``, ``EngineDiagnostic``); the
host converts them to 1-based line/column ``Position``s using the cached file
content of the project the request was made against.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class DiagnosticCategory(str, Enum):
    """Category reported by the engine."""

    ERROR = "error"
    WARNING = "warning"
    SUGGESTION = "suggestion"
    MESSAGE = "message"


@dataclass
class MessageChain:
    """Nested diagnostic message, flattened for display."""

    text: str
    next: List["MessageChain"] = field(default_factory=list)


@dataclass
class TextSpan:
    """Span of characters in a file."""

    path: str
    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length


@dataclass
class EngineDiagnostic:
    """A diagnostic as produced by the analysis engine."""

    start: int
    length: int
    message: Union[str, MessageChain]
    category: DiagnosticCategory = DiagnosticCategory.ERROR
    code: Optional[int] = None
    source: str = "syntactic"


@dataclass
class CompletionEntry:
    """A completion candidate."""

    name: str
    kind: str = "text"
    sort_text: Optional[str] = None
    insert_text: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "sort_text": self.sort_text or self.name,
            "insert_text": self.insert_text or self.name,
        }


@dataclass(frozen=True)
class Position:
    """1-based line and column."""

    line: int
    column: int

    def to_dict(self) -> Dict[str, int]:
        return {"line": self.line, "column": self.column}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        return cls(line=data["line"], column=data["column"])


@dataclass(frozen=True)
class Range:
    start: Position
    end: Position

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}


@dataclass
class Location:
    """A range inside a project file."""

    path: str
    range: Range

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "range": self.range.to_dict()}


@dataclass
class Diagnostic:
    """A diagnostic converted to line/column coordinates."""

    path: str
    range: Range
    message: str
    category: DiagnosticCategory = DiagnosticCategory.ERROR
    code: Optional[int] = None
    source: str = "syntactic"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "line": self.range.start.line,
            "column": self.range.start.column,
            "end_line": self.range.end.line,
            "end_column": self.range.end.column,
            "message": self.message,
            "category": self.category.value,
            "code": self.code,
            "source": self.source,
        }


@dataclass
class CompletionDetails:
    """Extra information about one completion entry."""

    name: str
    kind: str = "text"
    detail: str = ""
    documentation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "detail": self.detail,
            "documentation": self.documentation,
        }


@dataclass
class ParameterInfo:
    label: str
    documentation: str = ""


@dataclass
class SignatureInfo:
    """One candidate signature; ``label`` is the full rendered signature."""

    label: str
    documentation: str = ""
    parameters: List[ParameterInfo] = field(default_factory=list)


@dataclass
class SignatureHelp:
    """Signatures applicable at a call site."""

    signatures: List[SignatureInfo] = field(default_factory=list)
    active_signature: int = 0
    active_parameter: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signatures": [
                {
                    "label": s.label,
                    "documentation": s.documentation,
                    "parameters": [
                        {"label": p.label, "documentation": p.documentation}
                        for p in s.parameters
                    ],
                }
                for s in self.signatures
            ],
            "active_signature": self.active_signature,
            "active_parameter": self.active_parameter,
        }


@dataclass
class OccurrenceSpan:
    """An occurrence of a symbol as reported by the engine."""

    span: TextSpan
    is_write_access: bool = False


@dataclass
class NavigationItem:
    """Engine outline node; the first span is the item's extent."""

    text: str
    kind: str
    spans: List[TextSpan] = field(default_factory=list)
    child_items: List["NavigationItem"] = field(default_factory=list)


@dataclass
class TextChange:
    """Engine edit: replace ``span`` with ``new_text``."""

    span: TextSpan
    new_text: str


class HighlightKind(str, Enum):
    TEXT = "text"
    WRITE = "write"


@dataclass
class DocumentHighlight:
    range: Range
    kind: HighlightKind = HighlightKind.TEXT

    def to_dict(self) -> Dict[str, Any]:
        return {"range": self.range.to_dict(), "kind": self.kind.value}


@dataclass
class DocumentSymbol:
    """Flattened outline entry in line/column coordinates."""

    name: str
    kind: str
    range: Range
    container_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "range": self.range.to_dict(),
            "container_name": self.container_name,
        }


@dataclass
class TextEdit:
    range: Range
    new_text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"range": self.range.to_dict(), "new_text": self.new_text}
