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

"""Debounced re-validation of a project's current file.

Whenever a project changes, the registry emits a "should validate"
notification. The validator waits ``validation_delay`` seconds (restarting the
wait on every further change), then asks the workspace for diagnostics of the
project's current file and hands them to a sink.
"""

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set, Union

from multifile_bridge.config import BridgeSettings
from multifile_bridge.types import Diagnostic, MessageChain

if TYPE_CHECKING:
    from multifile_bridge.manager import ProjectWorkspace
    from multifile_bridge.project import Project

logger = logging.getLogger(__name__)

DiagnosticsSink = Callable[["Project", str, List[Diagnostic]], Any]


def flatten_diagnostic_message(message: Union[str, MessageChain], new_line: str = "\n") -> str:
    """Flatten a message chain, indenting each nested level by two spaces."""
    if isinstance(message, str):
        return message
    lines: List[str] = []
    stack = [(message, 0)]
    while stack:
        chain, indent = stack.pop()
        lines.append("  " * indent + chain.text)
        for child in reversed(chain.next):
            stack.append((child, indent + 1))
    return new_line.join(lines)


class DiagnosticsValidator:
    """Re-validates projects after they change.

    Usage:
        validator = DiagnosticsValidator(workspace, sink=publish_markers)
        ...
        await validator.dispose()
    """

    def __init__(
        self,
        workspace: "ProjectWorkspace",
        sink: DiagnosticsSink,
        settings: Optional[BridgeSettings] = None,
    ):
        """Initialize the validator.

        Args:
            workspace: Workspace used to compute diagnostics
            sink: Receives (project, path, diagnostics); may be a coroutine function
            settings: Bridge settings (uses the workspace's if not provided)
        """
        self._workspace = workspace
        self._sink = sink
        self._settings = settings or workspace.settings
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe = workspace.registry.on_should_validate(self.schedule)

    @property
    def scheduled_count(self) -> int:
        return len(self._timers)

    def schedule(self, project: "Project") -> None:
        """(Re)start the debounce timer for a project."""
        if not project.current_file or project.is_disposed:
            return
        timer = self._timers.pop(project.id, None)
        if timer is not None:
            timer.cancel()
        loop = asyncio.get_running_loop()
        self._timers[project.id] = loop.call_later(
            self._settings.validation_delay, self._fire, project
        )

    def schedule_all(self) -> None:
        for project in self._workspace.registry.projects:
            self.schedule(project)

    def _fire(self, project: "Project") -> None:
        self._timers.pop(project.id, None)
        if project.is_disposed:
            return
        task = asyncio.get_running_loop().create_task(self.validate(project))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def validate(self, project: "Project") -> Optional[List[Diagnostic]]:
        """Validate the project's current file now.

        Returns:
            The diagnostics passed to the sink, or None if nothing was validated
        """
        path = project.current_file
        if not path or project.is_disposed:
            return None

        try:
            diagnostics = await self._workspace.get_diagnostics(project.id, path)
        except Exception as e:
            logger.error(f"Validation of {path} in project {project.id} failed: {e}")
            return None

        # the project may have been disposed or switched files while we waited
        if project.is_disposed or project.current_file != path:
            return None

        try:
            result = self._sink(project, path, diagnostics)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Diagnostics sink failed for {path}: {e}")
        return diagnostics

    async def dispose(self) -> None:
        """Unsubscribe and cancel pending validations."""
        self._unsubscribe()
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
