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

"""Backing stores: the host-side source of truth for a project's files.

The bridge only needs two capabilities from a store: read one file, and list
every file of the project as an initial snapshot. Entries in the snapshot may
omit their content, in which case the engine loads them on demand.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from multifile_bridge import paths
from multifile_bridge.errors import BackingStoreError, NotFoundError
from multifile_bridge.protocol import FileEntry

logger = logging.getLogger(__name__)

# Directories never worth exposing to an analysis engine
DEFAULT_SKIP_DIRS: Set[str] = {
    "node_modules",
    "__pycache__",
    "build",
    "dist",
    "out",
    "coverage",
}


class BackingStore(ABC):
    """Abstract source of project files."""

    @abstractmethod
    async def read_file(self, path: str) -> str:
        """Read one file.

        Args:
            path: Root-relative file path

        Returns:
            File content

        Raises:
            NotFoundError: If the file does not exist
        """
        pass

    @abstractmethod
    async def read_all_directories(self) -> List[FileEntry]:
        """List every file of the project, with content where it is cheap to provide."""
        pass


class InMemoryBackingStore(BackingStore):
    """Store backed by a dict, for embedding and tests.

    Files named in ``lazy`` are announced without content by
    ``read_all_directories`` and only served through ``read_file``.
    """

    def __init__(self, files: Optional[Dict[str, str]] = None, lazy: Iterable[str] = ()):
        self._files: Dict[str, str] = {
            paths.normalize_path(path): content for path, content in (files or {}).items()
        }
        self._lazy: Set[str] = {paths.normalize_path(path) for path in lazy}
        self.read_count: Dict[str, int] = {}

    def set_file(self, path: str, content: str) -> None:
        self._files[paths.normalize_path(path)] = content

    async def read_file(self, path: str) -> str:
        key = paths.normalize_path(path)
        self.read_count[key] = self.read_count.get(key, 0) + 1
        if key not in self._files:
            raise NotFoundError(f"File not found in store: {path}", path=key)
        return self._files[key]

    async def read_all_directories(self) -> List[FileEntry]:
        return [
            FileEntry(path=path, content=None if path in self._lazy else content)
            for path, content in self._files.items()
        ]


class DirectoryBackingStore(BackingStore):
    """Store backed by a directory on disk.

    Blocking filesystem access runs in the default executor. By default the
    snapshot carries no content, so every file is loaded lazily when an
    engine first needs it.
    """

    def __init__(
        self,
        root: Union[str, Path],
        extensions: Optional[Iterable[str]] = None,
        eager: bool = False,
        skip_dirs: Optional[Iterable[str]] = None,
        encoding: str = "utf-8",
    ):
        """Initialize the store.

        Args:
            root: Project root directory
            extensions: Extensions to include (with dot); None includes all files
            eager: Read content into the initial snapshot
            skip_dirs: Directory names to skip in addition to DEFAULT_SKIP_DIRS
            encoding: Text encoding of the files
        """
        self.root = Path(root).resolve()
        self.extensions = {ext.lower() for ext in extensions} if extensions else None
        self.eager = eager
        self.skip_dirs = DEFAULT_SKIP_DIRS | set(skip_dirs or ())
        self.encoding = encoding

    def _resolve(self, path: str) -> Path:
        return self.root / paths.normalize_path(path)

    def _should_skip(self, relative: Path) -> bool:
        for part in relative.parts[:-1]:
            if part.startswith(".") or part in self.skip_dirs:
                return True
        return False

    def _read_text(self, path: str) -> str:
        target = self._resolve(path)
        try:
            return target.read_text(encoding=self.encoding)
        except FileNotFoundError:
            raise NotFoundError(f"File not found: {target}", path=path)
        except (OSError, UnicodeDecodeError) as e:
            raise BackingStoreError(f"Failed to read {target}: {e}", path=path) from e

    def _scan(self) -> List[FileEntry]:
        entries = []
        for file_path in sorted(self.root.rglob("*")):
            if not file_path.is_file():
                continue
            relative = file_path.relative_to(self.root)
            if self._should_skip(relative):
                continue
            if self.extensions is not None and file_path.suffix.lower() not in self.extensions:
                continue
            key = relative.as_posix()
            content = self._read_text(key) if self.eager else None
            entries.append(FileEntry(path=key, content=content))
        logger.debug(f"Scanned {len(entries)} files under {self.root}")
        return entries

    async def read_file(self, path: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read_text, path)

    async def read_all_directories(self) -> List[FileEntry]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._scan)
