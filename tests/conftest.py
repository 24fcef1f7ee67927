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

"""Shared fixtures for multi-file bridge tests."""

import re
from typing import List, Optional, Tuple

import pytest
import pytest_asyncio

from multifile_bridge.config import BridgeSettings
from multifile_bridge.engine import AnalysisEngine, ProjectHost
from multifile_bridge.manager import ProjectWorkspace
from multifile_bridge.project import ProjectRegistry
from multifile_bridge.types import (
    CompletionDetails,
    CompletionEntry,
    DiagnosticCategory,
    EngineDiagnostic,
    MessageChain,
    NavigationItem,
    OccurrenceSpan,
    ParameterInfo,
    SignatureHelp,
    SignatureInfo,
    TextChange,
    TextSpan,
)

_IMPORT = re.compile(r'import\s+"([^"]+)"')
_DECLARATION = re.compile(r"\b(?:let|const)\s+(\w+)")
_WORD = re.compile(r"\w+")
_FUNCTION = re.compile(r"\bfunction\s+(\w+)\s*\(([^)]*)\)")
_FUNCTION_BODY = re.compile(r"\bfunction\s+(\w+)\s*\([^)]*\)\s*\{[^}]*\}")


class FakeEngine(AnalysisEngine):
    """Deterministic engine that reads everything through its host.

    Rules:
        syntactic: every ``!!`` is an error
        semantic: every ``missing`` is an error; ``import "x"`` reads file x
        completions: every ``let``/``const`` name in the file
        signature help: calls to ``function name(params)`` declared in the file
        outline: functions with their declarations, then top-level declarations
        formatting: repeated spaces collapse, leading tabs expand
    """

    def __init__(self, mode: str = "typescript"):
        self.mode = mode
        self.calls: List[Tuple[str, str, Optional[int]]] = []
        self.snapshots: List[Tuple[str, str]] = []

    def _read(self, host: ProjectHost, path: str) -> str:
        content = host.get_script_snapshot(path)
        self.snapshots.append((path, content))
        return content

    def get_syntactic_diagnostics(self, host, path):
        self.calls.append(("syntactic", path, None))
        content = self._read(host, path)
        return [
            EngineDiagnostic(start=m.start(), length=2, message="Unexpected token", code=1109)
            for m in re.finditer(r"!!", content)
        ]

    def get_semantic_diagnostics(self, host, path):
        self.calls.append(("semantic", path, None))
        content = self._read(host, path)
        for imported in _IMPORT.findall(content):
            self._read(host, imported)
        return [
            EngineDiagnostic(
                start=m.start(),
                length=len("missing"),
                message=MessageChain(
                    "Cannot find name 'missing'.",
                    [MessageChain("Did you mean 'mission'?")],
                ),
                category=DiagnosticCategory.ERROR,
                code=2304,
                source="semantic",
            )
            for m in re.finditer(r"\bmissing\b", content)
        ]

    def get_completions(self, host, path, offset):
        self.calls.append(("completions", path, offset))
        content = self._read(host, path)
        return [
            CompletionEntry(name=name, kind="variable") for name in _DECLARATION.findall(content)
        ]

    def get_quick_info(self, host, path, offset):
        self.calls.append(("quick_info", path, offset))
        word = _word_at(self._read(host, path), offset)
        return f"let {word}" if word else None

    def get_definition(self, host, path, offset):
        self.calls.append(("definition", path, offset))
        content = self._read(host, path)
        word = _word_at(content, offset)
        for m in _DECLARATION.finditer(content):
            if m.group(1) == word:
                return [TextSpan(path=path, start=m.start(1), length=len(word))]
        return []

    def get_references(self, host, path, offset):
        self.calls.append(("references", path, offset))
        content = self._read(host, path)
        word = _word_at(content, offset)
        if not word:
            return []
        return [
            TextSpan(path=path, start=m.start(), length=len(word))
            for m in re.finditer(rf"\b{re.escape(word)}\b", content)
        ]

    def get_completion_details(self, host, path, offset, entry_name):
        self.calls.append(("completion_details", path, offset))
        if entry_name not in _DECLARATION.findall(self._read(host, path)):
            return None
        return CompletionDetails(
            name=entry_name, kind="variable", detail=f"let {entry_name}", documentation="local"
        )

    def get_signature_help(self, host, path, offset):
        self.calls.append(("signature_help", path, offset))
        content = self._read(host, path)
        functions = {name: params for name, params in _FUNCTION.findall(content)}
        depth, commas = 0, 0
        for index in range(offset - 1, -1, -1):
            char = content[index]
            if char == ")":
                depth += 1
            elif char == "(" and depth:
                depth -= 1
            elif char == "," and not depth:
                commas += 1
            elif char == "(":
                name = _word_at(content, index - 1)
                if name not in functions:
                    return None
                params = [p.strip() for p in functions[name].split(",") if p.strip()]
                signature = SignatureInfo(
                    label=f"{name}({', '.join(params)})",
                    parameters=[ParameterInfo(label=p) for p in params],
                )
                return SignatureHelp(signatures=[signature], active_parameter=commas)
        return None

    def get_occurrences(self, host, path, offset):
        self.calls.append(("occurrences", path, offset))
        content = self._read(host, path)
        word = _word_at(content, offset)
        if not word:
            return []
        return [
            OccurrenceSpan(
                span=TextSpan(path=path, start=m.start(), length=len(word)),
                is_write_access=bool(re.match(r"\s*=(?!=)", content[m.end():])),
            )
            for m in re.finditer(rf"\b{re.escape(word)}\b", content)
        ]

    def get_navigation_items(self, host, path):
        self.calls.append(("navigation_items", path, None))
        content = self._read(host, path)
        items = []
        bodies = []
        for m in _FUNCTION_BODY.finditer(content):
            bodies.append((m.start(), m.end()))
            children = []
            for d in _DECLARATION.finditer(m.group(0)):
                span = TextSpan(path=path, start=m.start() + d.start(), length=len(d.group(0)))
                children.append(NavigationItem(text=d.group(1), kind="variable", spans=[span]))
            items.append(
                NavigationItem(
                    text=m.group(1),
                    kind="function",
                    spans=[TextSpan(path=path, start=m.start(), length=len(m.group(0)))],
                    child_items=children,
                )
            )
        for d in _DECLARATION.finditer(content):
            if not any(start <= d.start() < end for start, end in bodies):
                span = TextSpan(path=path, start=d.start(), length=len(d.group(0)))
                items.append(NavigationItem(text=d.group(1), kind="variable", spans=[span]))
        return items

    def get_format_edits_for_range(self, host, path, start, end, options):
        self.calls.append(("format_range", path, start))
        return self._format(path, self._read(host, path), start, end, options)

    def get_format_edits_after_keystroke(self, host, path, offset, key, options):
        self.calls.append(("format_on_type", path, offset))
        if key != ";":
            return []
        content = self._read(host, path)
        line_start = content.rfind("\n", 0, offset) + 1
        return self._format(path, content, line_start, offset, options)

    @staticmethod
    def _format(path, content, start, end, options):
        """Collapse repeated spaces and expand leading tabs within [start, end)."""
        changes = []
        for m in re.finditer(r"(?m)^\t+| {2,}", content[start:end]):
            if m.group(0).startswith("\t"):
                if not options.insert_spaces:
                    continue
                new_text = " " * (options.tab_size * len(m.group(0)))
            elif m.start() == 0 or content[start + m.start() - 1] == "\n":
                continue
            else:
                new_text = " "
            span = TextSpan(path=path, start=start + m.start(), length=len(m.group(0)))
            changes.append(TextChange(span=span, new_text=new_text))
        return changes


def _word_at(content: str, offset: int) -> Optional[str]:
    for m in _WORD.finditer(content):
        if m.start() <= offset < m.end():
            return m.group(0)
    return None


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def settings():
    """Settings with a short debounce so validation tests stay fast."""
    return BridgeSettings(validation_delay=0.02)


@pytest.fixture
def registry():
    """Fresh registry, isolated from the global singleton."""
    registry = ProjectRegistry()
    yield registry
    registry.clear()


@pytest.fixture
def engines():
    """Engines created by the workspace, keyed by mode."""
    return {}


@pytest.fixture
def engine_factory(engines):
    """Engine factory that remembers the engines it created."""

    def create_engine(mode: str) -> FakeEngine:
        engine = FakeEngine(mode)
        engines[mode] = engine
        return engine

    return create_engine


@pytest_asyncio.fixture
async def workspace(registry, settings, engine_factory):
    """Workspace with a running typescript engine."""
    workspace = ProjectWorkspace(engine_factory, settings=settings, registry=registry)
    await workspace.start_engine("typescript")
    yield workspace
    await workspace.close()
