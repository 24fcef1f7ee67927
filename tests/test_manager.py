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

"""Tests for the ProjectWorkspace facade."""

import asyncio

import pytest

from multifile_bridge.config import BridgeSettings, EngineModeConfig, load_settings
from multifile_bridge.errors import NotFoundError
from multifile_bridge.manager import ProjectWorkspace
from multifile_bridge.store import InMemoryBackingStore
from multifile_bridge.protocol import FormatOptions
from multifile_bridge.types import DiagnosticCategory, HighlightKind, Position, Range

MAIN = "let x=2\nlet y=3\nmissing!!\n"


@pytest.fixture
def store():
    return InMemoryBackingStore({"src/main.ts": MAIN, "src/util.ts": "let util;"})


class TestEngineLifecycle:
    """Tests for starting, stopping and restarting engines."""

    @pytest.mark.asyncio
    async def test_unknown_mode(self, workspace):
        assert not await workspace.start_engine("cobol")

    @pytest.mark.asyncio
    async def test_start_registers_existing_projects(self, workspace, store, engines):
        project = await workspace.open_project(store, current_file="src/main.ts")
        assert await workspace.start_engine("javascript")
        worker = workspace.get_connection("javascript").worker
        await workspace.get_connection("javascript").serializer.wait_idle()
        assert worker.project_ids == [project.id]

    @pytest.mark.asyncio
    async def test_restart_replays_active_project(self, workspace, store):
        project = await workspace.open_project(store, current_file="src/main.ts")
        await workspace.set_active_project(project.id)
        assert await workspace.restart_engine("typescript")
        connection = workspace.get_connection("typescript")
        await connection.serializer.wait_idle()
        assert connection.worker.active_project_id == project.id
        assert connection.worker.get_project(project.id).tree.exists("src/util.ts")

    @pytest.mark.asyncio
    async def test_status(self, workspace, store):
        await workspace.open_project(store)
        await workspace.get_connection("typescript").serializer.wait_idle()
        status = workspace.get_status()["typescript"]
        assert status.running
        assert status.idle
        assert status.name == "TypeScript"
        assert status.registered_projects == 1

    @pytest.mark.asyncio
    async def test_context_manager_stops_engines(self, registry, engine_factory):
        async with ProjectWorkspace(engine_factory, registry=registry) as workspace:
            await workspace.start_engine("typescript")
            connection = workspace.get_connection("typescript")
        assert not connection.is_running
        assert workspace.get_status() == {}

    @pytest.mark.asyncio
    async def test_start_with_bounded_queue_registers_every_project(
        self, registry, engine_factory
    ):
        settings = BridgeSettings(queue_size=1)
        async with ProjectWorkspace(engine_factory, settings, registry) as workspace:
            projects = [
                await workspace.open_project(InMemoryBackingStore({f"{name}.ts": "let a;"}))
                for name in ("a", "b", "c")
            ]
            await workspace.set_active_project(projects[1].id)

            assert await workspace.start_engine("typescript")
            connection = workspace.get_connection("typescript")
            await connection.serializer.wait_idle()
            assert connection.worker.project_ids == [p.id for p in projects]
            assert connection.worker.active_project_id == projects[1].id

    @pytest.mark.asyncio
    async def test_custom_modes_route_files(self, registry, settings, engine_factory, engines):
        modes = {"css": EngineModeConfig(name="CSS", mode_id="css", file_extensions=[".css"])}
        async with ProjectWorkspace(engine_factory, settings, registry, modes) as workspace:
            assert not await workspace.start_engine("typescript")
            assert await workspace.start_engine("css")
            project = await workspace.open_project(
                InMemoryBackingStore({"a.css": "a { !! }", "b.ts": "!!"})
            )
            diagnostics = await workspace.get_diagnostics(project.id, "a.css")
            assert await workspace.get_diagnostics(project.id, "b.ts") == []

        assert [d.code for d in diagnostics] == [1109]
        assert ("syntactic", "a.css", None) in engines["css"].calls


class TestProjects:
    """Tests for opening, looking up and disposing projects."""

    @pytest.mark.asyncio
    async def test_open_and_get(self, workspace, store):
        project = await workspace.open_project(store, current_file="/src/main.ts")
        assert workspace.get_project(project.id) is project
        assert project.current_file == "src/main.ts"

    @pytest.mark.asyncio
    async def test_get_unknown(self, workspace):
        with pytest.raises(NotFoundError):
            workspace.get_project("nope")

    @pytest.mark.asyncio
    async def test_dispose_unregisters_from_engine(self, workspace, store):
        project = await workspace.open_project(store)
        await workspace.set_active_project(project.id)
        workspace.dispose_project(project.id)
        connection = workspace.get_connection("typescript")
        await connection.serializer.wait_idle()
        assert connection.worker.project_ids == []
        assert workspace.active_project_id is None
        with pytest.raises(NotFoundError):
            workspace.get_project(project.id)

    @pytest.mark.asyncio
    async def test_dispose_with_full_queue_unregisters(self, registry, engine_factory):
        settings = BridgeSettings(queue_size=1)
        async with ProjectWorkspace(engine_factory, settings, registry) as workspace:
            await workspace.start_engine("typescript")
            kept = await workspace.open_project(InMemoryBackingStore({"a.ts": "let a;"}))
            dropped = await workspace.open_project(InMemoryBackingStore({"b.ts": "let b;"}))
            connection = workspace.get_connection("typescript")
            await connection.serializer.wait_idle()

            gate = asyncio.Event()
            connection.serializer.submit(gate.wait)
            workspace.dispose_project(dropped.id)
            gate.set()

            await connection.serializer.wait_idle()
            assert connection.worker.project_ids == [kept.id]

    @pytest.mark.asyncio
    async def test_open_directory_honours_skip_dirs(self, tmp_path, registry, engine_factory):
        root = tmp_path / "project"
        (root / "src").mkdir(parents=True)
        (root / "src" / "a.ts").write_text("let a!!")
        (root / "src" / "notes.md").write_text("# notes")
        (root / "generated").mkdir()
        (root / "generated" / "g.ts").write_text("let g;")
        config = tmp_path / "bridge.yaml"
        config.write_text("bridge:\n  skip_dirs: [generated]\n")

        settings = load_settings(config)
        async with ProjectWorkspace(engine_factory, settings, registry) as workspace:
            await workspace.start_engine("typescript")
            project = await workspace.open_directory(root, current_file="src/a.ts")

            assert project.tree.exists("src/a.ts")
            assert not project.tree.exists("generated/g.ts")
            assert not project.tree.exists("src/notes.md")
            # content is read from disk on demand
            await workspace.get_diagnostics(project.id, "src/a.ts")
            await workspace.bridge.wait_for_pending()
            diagnostics = await workspace.get_diagnostics(project.id, "src/a.ts")
            assert [d.code for d in diagnostics] == [1109]

    @pytest.mark.asyncio
    async def test_projects_are_isolated(self, workspace):
        first = await workspace.open_project(InMemoryBackingStore({"a.ts": "let one!!"}))
        second = await workspace.open_project(InMemoryBackingStore({"a.ts": "let two"}))
        await workspace.set_active_project(second.id)

        assert len(await workspace.get_diagnostics(first.id, "a.ts")) == 1
        assert await workspace.get_diagnostics(second.id, "a.ts") == []

    @pytest.mark.asyncio
    async def test_extra_compile_files(self, workspace, store):
        project = await workspace.open_project(store, current_file="src/main.ts")
        await workspace.mark_extra_compile_file(project.id, "util", "src/util.ts")
        host = workspace.get_connection("typescript").worker.host_for(project.id)
        assert host.get_script_file_names() == ["src/main.ts", "src/util.ts"]
        await workspace.unmark_extra_compile_file(project.id, "util")
        assert host.get_script_file_names() == ["src/main.ts"]


class TestAnalysis:
    """Analysis results come back in line/column coordinates."""

    @pytest.mark.asyncio
    async def test_diagnostics(self, workspace, store):
        project = await workspace.open_project(store, current_file="src/main.ts")
        diagnostics = await workspace.get_diagnostics(project.id, "file:///src/main.ts")

        by_source = {d.source: d for d in diagnostics}
        syntactic = by_source["syntactic"]
        assert syntactic.range.start == Position(3, 8)
        assert syntactic.range.end == Position(3, 10)
        assert syntactic.code == 1109

        semantic = by_source["semantic"]
        assert semantic.range.start == Position(3, 1)
        assert semantic.category == DiagnosticCategory.ERROR
        assert semantic.message == "Cannot find name 'missing'.\n  Did you mean 'mission'?"
        assert semantic.to_dict()["line"] == 3

    @pytest.mark.asyncio
    async def test_diagnostics_see_latest_write(self, workspace, store):
        project = await workspace.open_project(store, current_file="src/main.ts")
        await project.write_file("src/main.ts", "let fixed;")
        assert await workspace.get_diagnostics(project.id, "src/main.ts") == []

    @pytest.mark.asyncio
    async def test_validation_flags(self, registry, store, engine_factory):
        settings = BridgeSettings(no_semantic_validation=True)
        async with ProjectWorkspace(engine_factory, settings, registry) as workspace:
            await workspace.start_engine("typescript")
            project = await workspace.open_project(store)
            diagnostics = await workspace.get_diagnostics(project.id, "src/main.ts")
        assert [d.source for d in diagnostics] == ["syntactic"]

    @pytest.mark.asyncio
    async def test_no_engine_for_file(self, workspace):
        project = await workspace.open_project(InMemoryBackingStore({"notes.md": "# hi"}))
        assert await workspace.get_diagnostics(project.id, "notes.md") == []
        assert await workspace.get_quick_info(project.id, "notes.md", Position(1, 1)) is None

    @pytest.mark.asyncio
    async def test_completions_use_position(self, workspace, store, engines):
        project = await workspace.open_project(store)
        entries = await workspace.get_completions(project.id, "src/main.ts", Position(2, 5))
        assert [entry.name for entry in entries] == ["x", "y"]
        assert engines["typescript"].calls[-1] == ("completions", "src/main.ts", 12)

    @pytest.mark.asyncio
    async def test_quick_info_uses_active_project(self, workspace, store):
        project = await workspace.open_project(store)
        await workspace.set_active_project(project.id)
        assert await workspace.get_quick_info(None, "src/main.ts", Position(2, 5)) == "let y"

    @pytest.mark.asyncio
    async def test_no_active_project(self, workspace):
        with pytest.raises(NotFoundError):
            await workspace.get_quick_info(None, "src/main.ts", Position(1, 1))

    @pytest.mark.asyncio
    async def test_definition_and_references(self, workspace):
        content = "let a=1\nlet b=a\n"
        project = await workspace.open_project(InMemoryBackingStore({"a.ts": content}))

        definitions = await workspace.get_definition(project.id, "a.ts", Position(2, 7))
        assert len(definitions) == 1
        assert definitions[0].path == "a.ts"
        assert definitions[0].range.start == Position(1, 5)

        references = await workspace.get_references(project.id, "a.ts", Position(1, 5))
        assert [ref.range.start for ref in references] == [Position(1, 5), Position(2, 7)]


class TestLanguageFeatures:
    """Editor features beyond diagnostics and navigation."""

    @pytest.mark.asyncio
    async def test_completion_details(self, workspace):
        project = await workspace.open_project(InMemoryBackingStore({"a.ts": "let total=1\n"}))
        details = await workspace.get_completion_details(
            project.id, "a.ts", Position(1, 5), "total"
        )
        assert details.detail == "let total"
        assert details.to_dict()["kind"] == "variable"
        assert (
            await workspace.get_completion_details(project.id, "a.ts", Position(1, 5), "nope")
            is None
        )

    @pytest.mark.asyncio
    async def test_signature_help(self, workspace):
        content = "function add(a, b) {}\nadd(1, 2)\n"
        project = await workspace.open_project(InMemoryBackingStore({"a.ts": content}))
        signature_help = await workspace.get_signature_help(project.id, "a.ts", Position(2, 8))
        assert signature_help.signatures[0].label == "add(a, b)"
        assert [p.label for p in signature_help.signatures[0].parameters] == ["a", "b"]
        assert signature_help.active_parameter == 1
        assert signature_help.to_dict()["active_parameter"] == 1

        assert await workspace.get_signature_help(project.id, "a.ts", Position(1, 1)) is None

    @pytest.mark.asyncio
    async def test_occurrences(self, workspace):
        content = "let a=1\nlet b=a\na=2\n"
        project = await workspace.open_project(InMemoryBackingStore({"a.ts": content}))
        highlights = await workspace.get_occurrences(project.id, "a.ts", Position(2, 7))
        assert [(h.range.start, h.kind) for h in highlights] == [
            (Position(1, 5), HighlightKind.WRITE),
            (Position(2, 7), HighlightKind.TEXT),
            (Position(3, 1), HighlightKind.WRITE),
        ]
        assert highlights[1].to_dict()["kind"] == "text"

    @pytest.mark.asyncio
    async def test_document_symbols_are_flattened(self, workspace):
        content = "function f() {\n  let inner=1\n}\nlet top=2\n"
        project = await workspace.open_project(InMemoryBackingStore({"a.ts": content}))
        symbols = await workspace.get_document_symbols(project.id, "file:///a.ts")

        assert [(s.name, s.kind, s.container_name) for s in symbols] == [
            ("inner", "variable", "f"),
            ("f", "function", None),
            ("top", "variable", None),
        ]
        assert symbols[0].range.start == Position(2, 3)
        assert symbols[1].range.start == Position(1, 1)
        assert symbols[1].range.end == Position(3, 2)
        assert symbols[2].range.start == Position(4, 1)

    @pytest.mark.asyncio
    async def test_format_range(self, workspace):
        content = "let  a =  1;\n\tlet b;\n"
        project = await workspace.open_project(InMemoryBackingStore({"a.ts": content}))
        selection = Range(Position(1, 1), Position(2, 7))

        edits = await workspace.format_range(project.id, "a.ts", selection)
        assert [(e.range.start, e.range.end, e.new_text) for e in edits] == [
            (Position(1, 4), Position(1, 6), " "),
            (Position(1, 9), Position(1, 11), " "),
            (Position(2, 1), Position(2, 2), "    "),
        ]

        options = FormatOptions(insert_spaces=False)
        edits = await workspace.format_range(project.id, "a.ts", selection, options)
        assert len(edits) == 2

    @pytest.mark.asyncio
    async def test_format_on_type(self, workspace, engines):
        project = await workspace.open_project(InMemoryBackingStore({"a.ts": "let  a;\n"}))
        edits = await workspace.format_on_type(project.id, "a.ts", Position(1, 8), ";")
        assert [(e.range.start, e.new_text) for e in edits] == [(Position(1, 4), " ")]
        assert edits[0].to_dict()["new_text"] == " "
        assert engines["typescript"].calls[-1] == ("format_on_type", "a.ts", 7)

        assert await workspace.format_on_type(project.id, "a.ts", Position(1, 8), "}") == []

    @pytest.mark.asyncio
    async def test_features_without_engine(self, workspace):
        project = await workspace.open_project(InMemoryBackingStore({"notes.md": "# hi"}))
        assert await workspace.get_document_symbols(project.id, "notes.md") == []
        assert await workspace.get_signature_help(project.id, "notes.md", Position(1, 1)) is None
        selection = Range(Position(1, 1), Position(1, 2))
        assert await workspace.format_range(project.id, "notes.md", selection) == []
